"""
Management command to import catalog items from a JSON file
"""
import json
import os
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from backend.catalog.models import Category, Item


class Command(BaseCommand):
    help = "Imports catalog items (and their categories) from a JSON array file"

    def add_arguments(self, parser):
        parser.add_argument(
            'json_file',
            type=str,
            help='Path to a JSON file holding a list of items',
        )
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear all existing items before importing',
        )

    def parse_entry(self, entry):
        """Return the Item field values for one JSON entry, or raise ValueError"""
        name = (entry.get('name') or '').strip()
        if not name:
            raise ValueError('name is required')
        try:
            price = Decimal(str(entry.get('price')))
        except (InvalidOperation, ValueError):
            raise ValueError(f'invalid price {entry.get("price")!r}')
        if price <= 0:
            raise ValueError('price must be positive')
        size = entry.get('size')
        if size not in dict(Item.SIZE_CHOICES):
            raise ValueError(f'size must be one of {", ".join(dict(Item.SIZE_CHOICES))}')
        stock_quantity = entry.get('stockQuantity', entry.get('stock_quantity', 0)) or 0
        if isinstance(stock_quantity, bool) or not isinstance(stock_quantity, int) or stock_quantity < 0:
            raise ValueError('stock quantity must be a non-negative integer')
        category_name = (entry.get('category') or 'OTHER').strip()
        return {
            'name': name,
            'price': price,
            'size': size,
            'stock_quantity': stock_quantity,
            'description': entry.get('description') or '',
            'image_url': entry.get('imageUrl') or entry.get('image_url') or '',
            'category_name': category_name,
        }

    def handle(self, *args, **options):
        json_file = options['json_file']
        clear = options['clear']

        if not os.path.isabs(json_file):
            json_file = os.path.normpath(os.path.join(settings.BASE_DIR, json_file))

        self.stdout.write(self.style.SUCCESS("=" * 80))
        self.stdout.write(self.style.SUCCESS("IMPORTING ITEMS FROM JSON"))
        self.stdout.write(self.style.SUCCESS("=" * 80))
        self.stdout.write(f"JSON File: {json_file}")

        try:
            with open(json_file, 'r', encoding='utf-8') as f:
                entries = json.load(f)
        except FileNotFoundError:
            raise CommandError(f"JSON file not found at {json_file}")
        except json.JSONDecodeError as e:
            raise CommandError(f"Invalid JSON in {json_file}: {e}")

        if not isinstance(entries, list):
            raise CommandError("JSON file must contain a list of items")

        created_count = 0
        skipped_count = 0
        error_count = 0

        with transaction.atomic():
            if clear:
                self.stdout.write(self.style.WARNING("Clearing all existing items..."))
                Item.objects.all().delete()

            for index, entry in enumerate(entries, start=1):
                if not isinstance(entry, dict):
                    error_count += 1
                    self.stdout.write(self.style.ERROR(f"  ✗ Entry {index}: not an object"))
                    continue
                try:
                    values = self.parse_entry(entry)
                except ValueError as e:
                    error_count += 1
                    self.stdout.write(self.style.ERROR(f"  ✗ Entry {index}: {e}"))
                    continue

                category, _ = Category.objects.get_or_create(name=values.pop('category_name'))
                if Item.objects.filter(name=values['name'], size=values['size'], category=category).exists():
                    skipped_count += 1
                    self.stdout.write(self.style.WARNING(f"  ⊘ Skipped (already exists): {values['name']}"))
                    continue

                Item.objects.create(category=category, **values)
                created_count += 1
                self.stdout.write(self.style.SUCCESS(f"  ✓ Created: {values['name']}"))

        self.stdout.write(self.style.SUCCESS("=" * 80))
        self.stdout.write(f"Items Created: {created_count}")
        self.stdout.write(f"Items Skipped (already exist): {skipped_count}")
        self.stdout.write(f"Entries With Errors: {error_count}")
        self.stdout.write(f"Total Items in Database: {Item.objects.count()}")
