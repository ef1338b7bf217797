# Shared Common Library for the booking platform services.
# Authentication, error envelope, pagination, request middleware and
# inter-service clients used by every service.

__version__ = "1.0.0"
