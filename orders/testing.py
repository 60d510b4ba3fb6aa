"""Fixture builders shared by the orders and tables test suites."""
from decimal import Decimal
from types import SimpleNamespace

from tables.models import DiningTable

from .models import Branch, MenuItem, Staff, StaffRole


def make_restaurant(name='Test Branch', key_prefix=''):
    branch = Branch.objects.create(name=name)
    return SimpleNamespace(
        branch=branch,
        admin=Staff.objects.create(branch=branch, full_name='Asha Admin', role=StaffRole.ADMIN,
                                   api_key=f'{key_prefix}admin-key'),
        waiter=Staff.objects.create(branch=branch, full_name='Ravi Waiter', role=StaffRole.WAITER,
                                    api_key=f'{key_prefix}waiter-key'),
        kitchen=Staff.objects.create(branch=branch, full_name='Kiran Kitchen', role=StaffRole.KITCHEN,
                                     api_key=f'{key_prefix}kitchen-key'),
        paneer=MenuItem.objects.create(branch=branch, name='Paneer Tikka', category='Starters',
                                       price=Decimal('100.00'), cgst_rate=Decimal('2.5'),
                                       sgst_rate=Decimal('2.5')),
        naan=MenuItem.objects.create(branch=branch, name='Butter Naan', category='Breads',
                                     price=Decimal('40.00'), cgst_rate=Decimal('2.5'),
                                     sgst_rate=Decimal('2.5')),
        beer=MenuItem.objects.create(branch=branch, name='Kingfisher Pint', category='Liquor',
                                     price=Decimal('200.00'), vat_rate=Decimal('10')),
        table=DiningTable.objects.create(branch=branch, number=1, grid_row=0, grid_col=0),
        other_table=DiningTable.objects.create(branch=branch, number=2, grid_row=0, grid_col=1),
    )
