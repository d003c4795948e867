"""
Scheduling engine services.

- slot_generator: candidate slots from working hours, duration and buffer
- availability_index: cached free/occupied projection of those slots
- booking_manager: serialized, conflict-free book/cancel/reschedule
- recurrence: expansion of recurring requests into independent bookings
"""
