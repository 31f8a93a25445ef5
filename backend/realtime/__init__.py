"""
Realtime app: change propagation over Django Channels.

Key Components:
    - notifications.py: publish "something changed" signals to groups after commit
    - consumers/: WebSocket consumers (requester, operator, booking)
    - middleware.py: JWT/Cookie authentication for WebSocket connections
    - routing.py: WebSocket URL patterns

Usage:
    from realtime.notifications import publish_booking_change, publish_ambulance_change
    from realtime.consumers import RequesterConsumer, OperatorConsumer, BookingConsumer
"""
