from rest_framework import serializers
from decimal import Decimal
from .models import Order, OrderItem


class OrderItemSerializer(serializers.ModelSerializer):
    spare_part_name = serializers.CharField(source='spare_part.name', read_only=True)
    part_number = serializers.CharField(source='spare_part.part_number', read_only=True)

    class Meta:
        model = OrderItem
        fields = ['id', 'spare_part', 'spare_part_name', 'part_number', 'quantity', 'unit_price',
                  'discount', 'total_price', 'notes']


class OrderSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    user_email = serializers.CharField(source='user.email', read_only=True)
    car_summary = serializers.SerializerMethodField()
    subtotal = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = ['id', 'order_number', 'user', 'user_email', 'car', 'car_summary', 'status',
                  'payment_status', 'payment_method', 'subtotal', 'discount_amount', 'tax_amount',
                  'shipping_cost', 'total_amount', 'shipping_address', 'billing_address',
                  'shipping_method', 'tracking_number', 'notes', 'estimated_delivery_date',
                  'actual_delivery_date', 'items', 'created_at', 'updated_at']
        read_only_fields = fields

    def get_car_summary(self, obj):
        if not obj.car_id:
            return None
        car = obj.car
        return {'id': car.id, 'make': car.make, 'model': car.model, 'year': car.year, 'vin': car.vin}

    def get_subtotal(self, obj):
        subtotal = obj.car.price if obj.car_id else Decimal('0.00')
        for item in obj.items.all():
            subtotal += item.total_price
        return str(subtotal.quantize(Decimal('0.01')))


class OrderItemInputSerializer(serializers.Serializer):
    spare_part_id = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1)
    unit_price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0.00'), required=False)
    discount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0.00'), required=False)
    notes = serializers.CharField(required=False, allow_blank=True)


class OrderCreateSerializer(serializers.Serializer):
    user_id = serializers.IntegerField(min_value=1, required=False)
    car_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    items = OrderItemInputSerializer(many=True, required=False)
    discount_amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0.00'), required=False)
    tax_amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0.00'), required=False)
    shipping_cost = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0.00'), required=False)
    payment_method = serializers.CharField(max_length=50, required=False, allow_blank=True)
    payment_status = serializers.ChoiceField(choices=Order.PAYMENT_STATUS_CHOICES, required=False)
    shipping_address = serializers.CharField(required=False, allow_blank=True)
    billing_address = serializers.CharField(required=False, allow_blank=True)
    shipping_method = serializers.CharField(max_length=50, required=False, allow_blank=True)
    estimated_delivery_date = serializers.DateTimeField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class OrderStatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.STATUS_CHOICES, required=False)
    payment_status = serializers.ChoiceField(choices=Order.PAYMENT_STATUS_CHOICES, required=False)
    tracking_number = serializers.CharField(max_length=100, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError('Provide at least one of status, payment_status, tracking_number or notes')
        return attrs


class OrderCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True)
