from django.urls import path
from . import views

urlpatterns = [
    path('', views.TableListView.as_view(), name='tables'),
    path('<int:table_id>/', views.TableDetailView.as_view(), name='table_detail'),
    path('<int:table_id>/status/', views.TableStatusView.as_view(), name='table_status'),
]
