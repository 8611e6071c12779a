"""Core back-office domain for charter brokers: quotes, invoices, itineraries and client links."""
