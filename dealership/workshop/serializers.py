from rest_framework import serializers
from decimal import Decimal
from dealership.core.exceptions import ConflictError
from .models import Service, ServiceType


class ServiceTypeSerializer(serializers.ModelSerializer):
    name = serializers.CharField(max_length=100)

    class Meta:
        model = ServiceType
        fields = ['id', 'name', 'description', 'estimated_duration', 'base_price', 'is_active',
                  'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']

    def validate_name(self, value):
        value = value.strip()
        duplicates = ServiceType.objects.filter(name__iexact=value)
        if self.instance is not None:
            duplicates = duplicates.exclude(pk=self.instance.pk)
        if duplicates.exists():
            raise ConflictError(f'Service type {value} already exists', field='name')
        return value


class ServiceSerializer(serializers.ModelSerializer):
    service_type_name = serializers.CharField(source='service_type.name', read_only=True)
    user_email = serializers.CharField(source='user.email', read_only=True)
    technician_name = serializers.SerializerMethodField()
    car_summary = serializers.SerializerMethodField()

    class Meta:
        model = Service
        fields = ['id', 'user', 'user_email', 'car', 'car_summary', 'service_type', 'service_type_name',
                  'technician', 'technician_name', 'scheduled_date', 'completed_date', 'status',
                  'estimated_cost', 'actual_cost', 'notes', 'technician_notes', 'mileage',
                  'payment_status', 'created_at', 'updated_at']
        read_only_fields = fields

    def get_technician_name(self, obj):
        if not obj.technician_id:
            return None
        return obj.technician.get_full_name() or obj.technician.username

    def get_car_summary(self, obj):
        car = obj.car
        return {'id': car.id, 'make': car.make, 'model': car.model, 'year': car.year, 'vin': car.vin}


class ServiceCreateSerializer(serializers.Serializer):
    user_id = serializers.IntegerField(min_value=1, required=False)
    car_id = serializers.IntegerField(min_value=1)
    service_type_id = serializers.IntegerField(min_value=1)
    technician_id = serializers.IntegerField(min_value=1, required=False)
    scheduled_date = serializers.DateTimeField()
    estimated_cost = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0.00'), required=False)
    mileage = serializers.IntegerField(min_value=0, required=False)
    notes = serializers.CharField(required=False, allow_blank=True)


class ServiceUpdateSerializer(serializers.Serializer):
    scheduled_date = serializers.DateTimeField(required=False)
    status = serializers.ChoiceField(choices=Service.STATUS_CHOICES, required=False)
    service_type_id = serializers.IntegerField(min_value=1, required=False)
    technician_id = serializers.IntegerField(min_value=1, required=False)
    completed_date = serializers.DateTimeField(required=False)
    actual_cost = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0.00'), required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    technician_notes = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError('Provide at least one field to update')
        return attrs


class ServiceCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True)
