"""
Django management command to list spare parts at or below their minimum stock level
"""
from django.core.management.base import BaseCommand
from dealership.inventory.services import StockLedger


class Command(BaseCommand):
    help = 'List spare parts whose stock is at or below their minimum level'

    def add_arguments(self, parser):
        parser.add_argument(
            '--category',
            type=str,
            help='Only check parts in this category',
        )
        parser.add_argument(
            '--database',
            default='default',
            help='Database alias to check (default: default)',
        )

    def handle(self, *args, **options):
        category = options.get('category')
        parts = StockLedger(using=options['database']).low_stock_parts()
        if category:
            parts = parts.filter(category__iexact=category)

        self.stdout.write("=" * 80)
        self.stdout.write(self.style.SUCCESS("LOW STOCK SPARE PARTS"))
        self.stdout.write("=" * 80)

        count = 0
        for part in parts:
            count += 1
            line = f"{part.part_number:<20} {part.name:<35} stock {part.stock:>5} / min {part.min_stock_level:>5}"
            if part.stock == 0:
                self.stdout.write(self.style.ERROR(f"✗ {line} (OUT OF STOCK)"))
            else:
                self.stdout.write(self.style.WARNING(f"! {line}"))

        if count == 0:
            self.stdout.write(self.style.SUCCESS("✓ All spare parts are above their minimum stock level"))
        else:
            self.stdout.write("")
            self.stdout.write(f"{count} part(s) need restocking")
