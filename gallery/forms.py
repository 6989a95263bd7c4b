from flask_wtf import FlaskForm
from flask_wtf.file import FileField, FileRequired
from werkzeug.datastructures import FileStorage
from wtforms import Form, FieldList, FormField, StringField, TextAreaField, SelectField
from wtforms.validators import DataRequired, Length, Optional

MEDIA_CHOICES = [('image', 'Image'), ('video', 'Video')]


def _has_file(field):
    return isinstance(field.data, FileStorage) and bool(field.data.filename)


class StudentForm(FlaskForm):
    name = StringField('Name', validators=[DataRequired(message='Enter a name'), Length(max=120)])
    category = StringField('Category', validators=[Optional(), Length(max=80)])
    cover = FileField('Cover image', validators=[FileRequired(message='Choose a cover image')])


class EditStudentForm(FlaskForm):
    name = StringField('Name', validators=[DataRequired(message='Enter a name'), Length(max=120)])
    category = StringField('Category', validators=[Optional(), Length(max=80)])
    cover = FileField('New cover image')

    def has_cover(self):
        return _has_file(self.cover)


class ArtworkCardForm(Form):
    """One artwork card. Blank cards are ignored; the rest need a type and a file."""
    type = StringField('Type', validators=[Optional(), Length(max=80)])
    title = StringField('Title', validators=[Optional(), Length(max=200)])
    description = TextAreaField('Description', validators=[Optional()])
    media_type = SelectField('Media', choices=MEDIA_CHOICES, default='image')
    media = FileField('File')

    def is_blank(self):
        return not ((self.type.data or '').strip()
                    or (self.title.data or '').strip()
                    or (self.description.data or '').strip()
                    or _has_file(self.media))

    def is_complete(self):
        return bool((self.type.data or '').strip()) and _has_file(self.media)


class ArtworkBatchForm(FlaskForm):
    cards = FieldList(FormField(ArtworkCardForm), min_entries=1)

    def filled_cards(self):
        return [entry.form for entry in self.cards if not entry.form.is_blank()]
