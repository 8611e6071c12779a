"""Dashboard package exposing the back-office app."""

from .app import BACK_OFFICE_TABS, render_back_office

__all__ = ["BACK_OFFICE_TABS", "render_back_office"]
