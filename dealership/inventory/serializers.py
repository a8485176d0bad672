from django.db import transaction
from django.utils import timezone
from rest_framework import serializers
from dealership.core.exceptions import ConflictError, InvalidTransitionError, NotFoundError
from .models import Car, SparePart, StockAdjustment

# Statuses the CRUD endpoints may set; the rest belong to the order lifecycle
CRUD_CAR_STATUSES = (Car.STATUS_AVAILABLE, Car.STATUS_MAINTENANCE)


def check_crud_status(current, requested):
    if requested == current:
        return
    if current not in CRUD_CAR_STATUSES or requested not in CRUD_CAR_STATUSES:
        raise InvalidTransitionError(current, requested)


class CarSerializer(serializers.ModelSerializer):
    vin = serializers.CharField(min_length=17, max_length=17)
    status = serializers.ChoiceField(choices=Car.STATUS_CHOICES, required=False)

    class Meta:
        model = Car
        fields = ['id', 'vin', 'make', 'model', 'year', 'car_type', 'price', 'mileage', 'color',
                  'license_plate', 'transmission', 'fuel_type', 'engine_size', 'description',
                  'features', 'images', 'status', 'is_featured', 'exterior_condition',
                  'interior_condition', 'previous_owners', 'service_history',
                  'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']

    def validate_vin(self, value):
        value = value.strip().upper()
        duplicates = Car.objects.filter(vin=value)
        if self.instance is not None:
            duplicates = duplicates.exclude(pk=self.instance.pk)
        if duplicates.exists():
            raise ConflictError(f'A car with VIN {value} already exists', field='vin')
        return value

    def validate_status(self, value):
        current = self.instance.status if self.instance is not None else Car.STATUS_AVAILABLE
        check_crud_status(current, value)
        return value

    def validate_features(self, value):
        if not isinstance(value, list):
            raise serializers.ValidationError('Features must be a list')
        return value

    def update(self, instance, validated_data):
        """
        Write only the supplied fields, against a locked row.

        Status is owned by the order engine while a car is RESERVED or SOLD,
        so it is re-checked on the locked row and moved with a conditional
        UPDATE; it is never copied over from ``instance``.
        """
        validated = dict(validated_data)
        requested_status = validated.pop('status', None)

        with transaction.atomic():
            car = Car.objects.select_for_update().filter(pk=instance.pk).first()
            if car is None:
                raise NotFoundError(f'Car {instance.pk} not found')

            if requested_status is not None and requested_status != car.status:
                check_crud_status(car.status, requested_status)
                updated = Car.objects.filter(pk=car.pk, status=car.status).update(
                    status=requested_status,
                    updated_at=timezone.now(),
                )
                if not updated:
                    raise ConflictError('Car status changed while updating, try again', field='status')

            for field, value in validated.items():
                setattr(car, field, value)
            car.save(update_fields=list(validated) + ['updated_at'])

        car.refresh_from_db()
        return car


class SparePartSerializer(serializers.ModelSerializer):
    part_number = serializers.CharField(max_length=50)
    stock = serializers.IntegerField(min_value=0, required=False)
    is_low_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = SparePart
        fields = ['id', 'name', 'part_number', 'description', 'price', 'stock', 'min_stock_level',
                  'is_low_stock', 'category', 'compatibility', 'manufacturer', 'weight', 'dimensions',
                  'images', 'is_original', 'location', 'warranty_period', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']

    def validate_part_number(self, value):
        value = value.strip()
        duplicates = SparePart.objects.filter(part_number=value)
        if self.instance is not None:
            duplicates = duplicates.exclude(pk=self.instance.pk)
        if duplicates.exists():
            raise ConflictError(f'A spare part with number {value} already exists', field='part_number')
        return value

    def validate_stock(self, value):
        # Initial stock only; later changes go through adjust-stock
        if self.instance is not None and value != self.instance.stock:
            raise serializers.ValidationError('Stock can only be changed through stock adjustments')
        return value


class StockAdjustmentSerializer(serializers.ModelSerializer):
    spare_part_name = serializers.CharField(source='spare_part.name', read_only=True)
    part_number = serializers.CharField(source='spare_part.part_number', read_only=True)
    created_by = serializers.StringRelatedField(read_only=True)

    class Meta:
        model = StockAdjustment
        fields = ['id', 'spare_part', 'spare_part_name', 'part_number', 'operation', 'quantity',
                  'previous_stock', 'new_stock', 'reason', 'created_by', 'created_at']

