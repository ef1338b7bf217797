from django.contrib import admin
from django.urls import path, include

from shared.common.health import get_health_urlpatterns

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include('apps.api.urls')),
] + get_health_urlpatterns()
