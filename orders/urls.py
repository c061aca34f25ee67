from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import OrderViewSet, ProposalViewSet

router = DefaultRouter()
router.register(r'orders', OrderViewSet)
router.register(r'proposals', ProposalViewSet)

urlpatterns = [
    path('', include(router.urls)),
]
