"""
Services package - Business logic layer.

This package contains all business logic services that operate on Django models
but are decoupled from the HTTP/WebSocket layer.

Modules:
    - availability: Ambulance availability ledger
    - matching: Nearest-ambulance locator
    - routing: Route ETA lookups
    - booking_management: Core booking lifecycle operations
    - payment_correlation: Payment orders and outcomes
    - exceptions: Typed failures shared by all of the above

Import from the submodules directly; the package itself stays empty so the
submodules can depend on each other without import cycles.
"""
