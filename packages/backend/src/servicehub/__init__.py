"""ServiceHub — live update backend for the services marketplace.

Clients request home and trade services, workers fulfil them. This package
keeps every open session in sync with the marketplace's data store:
request status, messages, document review, and admin alerts.
"""

__version__ = "0.1.0"
