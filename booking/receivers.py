# booking/receivers.py
#
# Purpose:
# - Keep the availability projection honest when the inputs it is built from
#   change outside the booking path (admin edits to working hours, exceptions,
#   staff timezone or service duration/buffer).
#
from django.db.models.signals import m2m_changed, post_delete, post_save
from django.dispatch import receiver

from staff.models import WorkingHours, WorkingHoursException

from .models import Service, Staff
from .services.availability_index import AvailabilityIndex


@receiver(post_save, sender=WorkingHours)
@receiver(post_delete, sender=WorkingHours)
@receiver(post_save, sender=WorkingHoursException)
@receiver(post_delete, sender=WorkingHoursException)
def working_hours_changed(sender, instance, **kwargs):
    AvailabilityIndex().invalidate_staff(instance.staff_id)


@receiver(post_save, sender=Staff)
def staff_changed(sender, instance, created, **kwargs):
    if not created:
        AvailabilityIndex().invalidate_staff(instance.pk)


@receiver(m2m_changed, sender=Staff.services.through)
def staff_services_changed(sender, instance, action, pk_set, **kwargs):
    if not action.startswith("post_"):
        return
    if isinstance(instance, Staff):
        staff_ids = [instance.pk]
    else:
        staff_ids = pk_set or list(instance.staff.values_list("pk", flat=True))
    index = AvailabilityIndex()
    for staff_id in staff_ids:
        index.invalidate_staff(staff_id)


@receiver(post_save, sender=Service)
def service_changed(sender, instance, created, **kwargs):
    if created:
        return
    index = AvailabilityIndex()
    for staff_id in instance.staff.values_list("pk", flat=True):
        index.invalidate_staff(staff_id)
