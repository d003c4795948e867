from django.urls import include, path
from rest_framework.routers import SimpleRouter

from .views import WaitlistViewSet

router = SimpleRouter()
router.register(r"waitlist", WaitlistViewSet, basename="waitlist")

urlpatterns = [path("", include(router.urls))]
