from wtforms import StringField, IntegerField, DateTimeField, FieldList, FormField
from wtforms.validators import DataRequired, Optional, NumberRange, AnyOf

from petcare.appointments.forms import ApiForm, RequirementForm, ISO_FORMATS
from petcare.models.customer import PET_SPECIES
from petcare.models.reservation import HOLD_CREATED_BY


class HoldForm(ApiForm):
    """Hold a service item slot, or an explicit list of tentative entries"""
    location_id = IntegerField('Location', validators=[DataRequired()])
    customer_id = IntegerField('Customer', validators=[DataRequired()])
    pet_id = IntegerField('Pet', validators=[Optional()])
    species = StringField('Species', validators=[Optional(), AnyOf(PET_SPECIES)])
    service_id = IntegerField('Service', validators=[Optional()])
    service_item_id = IntegerField('Service Item', validators=[Optional()])
    staff_id = IntegerField('Staff', validators=[Optional()])
    start = DateTimeField('Start', validators=[Optional()], format=ISO_FORMATS)
    end = DateTimeField('End', validators=[Optional()], format=ISO_FORMATS)
    ttl_seconds = IntegerField('TTL', validators=[Optional(), NumberRange(min=1)])
    created_by = StringField('Created By', validators=[Optional(), AnyOf(HOLD_CREATED_BY)])
    tentative = FieldList(FormField(RequirementForm))

    def validate(self, extra_validators=None):
        if not super().validate(extra_validators):
            return False
        if not self.tentative.entries and (self.service_item_id.data is None or self.start.data is None):
            self.tentative.errors.append('Provide tentative entries or a service item with a start time')
            return False
        return True


class HoldFilterForm(ApiForm):
    location_id = IntegerField('Location', validators=[Optional()])
