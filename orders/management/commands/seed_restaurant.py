import secrets
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction

from orders.models import Branch, MenuItem, Order, Staff, StaffRole
from tables.models import DiningTable


class Command(BaseCommand):
    help = 'Seed the database with a branch, staff, menu items and tables'

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing restaurant data before seeding',
        )
        parser.add_argument(
            '--branch',
            default='Main Branch',
            help='Name of the branch to seed',
        )

    @transaction.atomic
    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing restaurant data...')
            DiningTable.objects.update(current_order=None)
            Order.objects.all().delete()
            DiningTable.objects.all().delete()
            Branch.objects.all().delete()
            self.stdout.write(
                self.style.SUCCESS('Successfully cleared restaurant data')
            )

        branch, _ = Branch.objects.get_or_create(name=options['branch'])

        staff_members = [
            {"full_name": "Asha Admin", "role": StaffRole.ADMIN},
            {"full_name": "Ravi Waiter", "role": StaffRole.WAITER},
            {"full_name": "Kiran Kitchen", "role": StaffRole.KITCHEN},
        ]

        # Food carries CGST + SGST, liquor carries VAT
        menu_items = [
            {"name": "Paneer Tikka", "category": "Starters", "price": "280.00",
             "cgst_rate": "2.5", "sgst_rate": "2.5", "vat_rate": "0"},
            {"name": "Chicken 65", "category": "Starters", "price": "320.00",
             "cgst_rate": "2.5", "sgst_rate": "2.5", "vat_rate": "0"},
            {"name": "Dal Makhani", "category": "Mains", "price": "240.00",
             "cgst_rate": "2.5", "sgst_rate": "2.5", "vat_rate": "0"},
            {"name": "Butter Naan", "category": "Breads", "price": "60.00",
             "cgst_rate": "2.5", "sgst_rate": "2.5", "vat_rate": "0"},
            {"name": "Fresh Lime Soda", "category": "Beverages", "price": "90.00",
             "cgst_rate": "2.5", "sgst_rate": "2.5", "vat_rate": "0"},
            {"name": "Kingfisher Pint", "category": "Liquor", "price": "200.00",
             "cgst_rate": "0", "sgst_rate": "0", "vat_rate": "10"},
            {"name": "Old Monk Large", "category": "Liquor", "price": "180.00",
             "cgst_rate": "0", "sgst_rate": "0", "vat_rate": "10"},
        ]

        for staff_data in staff_members:
            staff, created = Staff.objects.get_or_create(
                branch=branch,
                full_name=staff_data['full_name'],
                defaults={
                    'role': staff_data['role'],
                    'api_key': secrets.token_hex(16)
                }
            )
            label = "Created" if created else "Already exists"
            self.stdout.write(f"{label}: {staff.full_name} ({staff.role}) key={staff.api_key}")

        created_items = []
        for item_data in menu_items:
            item, created = MenuItem.objects.get_or_create(
                branch=branch,
                name=item_data['name'],
                defaults={
                    'category': item_data['category'],
                    'price': Decimal(item_data['price']),
                    'cgst_rate': Decimal(item_data['cgst_rate']),
                    'sgst_rate': Decimal(item_data['sgst_rate']),
                    'vat_rate': Decimal(item_data['vat_rate'])
                }
            )
            if created:
                created_items.append(item)

        # A 3 x 4 floor grid
        for number in range(1, 13):
            DiningTable.objects.get_or_create(
                branch=branch,
                number=number,
                defaults={
                    'capacity': 2 if number % 3 == 0 else 4,
                    'grid_row': (number - 1) // 4,
                    'grid_col': (number - 1) % 4
                }
            )

        self.stdout.write(
            self.style.SUCCESS(f'\nTotal new menu items created: {len(created_items)}')
        )

        self.stdout.write("\nAll menu items in branch:")
        self.stdout.write("-" * 60)
        for item in MenuItem.objects.filter(branch=branch).order_by('name'):
            self.stdout.write(
                f"ID: {item.id:2d} | {item.name:20s} | {item.price:8.2f} | "
                f"CGST {item.cgst_rate:4.1f}% SGST {item.sgst_rate:4.1f}% VAT {item.vat_rate:4.1f}%"
            )
