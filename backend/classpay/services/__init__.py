"""Service layer: business operations and their transaction boundaries."""
