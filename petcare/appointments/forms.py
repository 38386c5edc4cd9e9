from flask_wtf import FlaskForm
from wtforms import Form, StringField, IntegerField, DateTimeField, FieldList, FormField
from wtforms.validators import DataRequired, Optional, Length, NumberRange, AnyOf, ValidationError

from petcare.models.appointment import SOURCES
from petcare.models.customer import PET_SPECIES
from petcare.scheduling.clock import to_utc_naive

# Accepted request datetime formats; offsets are normalized to UTC by the engine
ISO_FORMATS = [
    '%Y-%m-%dT%H:%M:%S%z',
    '%Y-%m-%dT%H:%M:%S.%f%z',
    '%Y-%m-%dT%H:%M%z',
    '%Y-%m-%dT%H:%M:%S',
    '%Y-%m-%dT%H:%M:%S.%f',
    '%Y-%m-%dT%H:%M',
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%d %H:%M',
]


class ApiForm(FlaskForm):
    """Base for JSON API forms; the gateway handles CSRF"""
    class Meta:
        csrf = False


class RequirementForm(Form):
    """One explicit requirement: a staff member and/or N resources of a type for a window"""
    staff_id = IntegerField('Staff', validators=[Optional()])
    resource_type_id = IntegerField('Resource Type', validators=[Optional()])
    quantity = IntegerField('Quantity', validators=[Optional(), NumberRange(min=1)])
    start = DateTimeField('Start', validators=[DataRequired()], format=ISO_FORMATS)
    end = DateTimeField('End', validators=[DataRequired()], format=ISO_FORMATS)
    buffer_before = IntegerField('Buffer Before', validators=[Optional(), NumberRange(min=0)])
    buffer_after = IntegerField('Buffer After', validators=[Optional(), NumberRange(min=0)])

    def validate(self, extra_validators=None):
        if not super().validate(extra_validators):
            return False
        if self.staff_id.data is None and self.resource_type_id.data is None:
            self.staff_id.errors.append('Either staff_id or resource_type_id is required')
            return False
        if to_utc_naive(self.end.data) <= to_utc_naive(self.start.data):
            self.end.errors.append('End time must be after start time')
            return False
        return True


class AvailabilityCheckForm(ApiForm):
    """Availability for a service item at a time, or for explicit requirements"""
    location_id = IntegerField('Location', validators=[DataRequired()])
    service_id = IntegerField('Service', validators=[Optional()])
    service_item_id = IntegerField('Service Item', validators=[Optional()])
    staff_id = IntegerField('Staff', validators=[Optional()])
    pet_id = IntegerField('Pet', validators=[Optional()])
    species = StringField('Species', validators=[Optional(), AnyOf(PET_SPECIES)])
    start = DateTimeField('Start', validators=[Optional()], format=ISO_FORMATS)
    end = DateTimeField('End', validators=[Optional()], format=ISO_FORMATS)
    exclude_appointment_id = IntegerField('Exclude Appointment', validators=[Optional()])
    exclude_hold_id = IntegerField('Exclude Hold', validators=[Optional()])
    requirements = FieldList(FormField(RequirementForm))

    def validate(self, extra_validators=None):
        if not super().validate(extra_validators):
            return False
        if not self.requirements.entries:
            if self.service_item_id.data is None:
                self.service_item_id.errors.append('A service item or a list of requirements is required')
                return False
            if self.start.data is None:
                self.start.errors.append('Start time is required for a service item')
                return False
        return True


class AppointmentForm(ApiForm):
    """Form for booking a new appointment"""
    location_id = IntegerField('Location', validators=[DataRequired()])
    customer_id = IntegerField('Customer', validators=[DataRequired()])
    pet_id = IntegerField('Pet', validators=[DataRequired()])
    service_id = IntegerField('Service', validators=[DataRequired()])
    service_item_id = IntegerField('Service Item', validators=[DataRequired()])
    staff_id = IntegerField('Staff', validators=[Optional()])
    start = DateTimeField('Start', validators=[DataRequired()], format=ISO_FORMATS)
    end = DateTimeField('End', validators=[Optional()], format=ISO_FORMATS)
    notes = StringField('Notes', validators=[Optional(), Length(max=500)])
    source = StringField('Source', validators=[Optional(), AnyOf(SOURCES)])
    hold_id = IntegerField('Hold', validators=[Optional()])

    def validate_end(self, end):
        if self.start.data is not None and to_utc_naive(end.data) <= to_utc_naive(self.start.data):
            raise ValidationError('End time must be after start time')


class AppointmentUpdateForm(ApiForm):
    """Partial update; only submitted fields change"""
    pet_id = IntegerField('Pet', validators=[Optional()])
    service_id = IntegerField('Service', validators=[Optional()])
    service_item_id = IntegerField('Service Item', validators=[Optional()])
    staff_id = IntegerField('Staff', validators=[Optional()])
    start = DateTimeField('Start', validators=[Optional()], format=ISO_FORMATS)
    end = DateTimeField('End', validators=[Optional()], format=ISO_FORMATS)
    notes = StringField('Notes', validators=[Optional(), Length(max=500)])
    source = StringField('Source', validators=[Optional(), AnyOf(SOURCES)])


class StatusForm(ApiForm):
    status = StringField('Status', validators=[DataRequired()])
    reason = StringField('Reason', validators=[Optional()])


class RescheduleForm(ApiForm):
    start = DateTimeField('Start', validators=[DataRequired()], format=ISO_FORMATS)
    end = DateTimeField('End', validators=[Optional()], format=ISO_FORMATS)
    staff_id = IntegerField('Staff', validators=[Optional()])
    notes = StringField('Notes', validators=[Optional(), Length(max=500)])
    reason = StringField('Reason', validators=[Optional()])


class AppointmentFilterForm(ApiForm):
    """Query-string filters for listing appointments"""
    location_id = IntegerField('Location', validators=[Optional()])
    staff_id = IntegerField('Staff', validators=[Optional()])
    customer_id = IntegerField('Customer', validators=[Optional()])
    status = StringField('Status', validators=[Optional()])
    start_from = DateTimeField('From', validators=[Optional()], format=ISO_FORMATS)
    start_to = DateTimeField('To', validators=[Optional()], format=ISO_FORMATS)
