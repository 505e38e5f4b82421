"""
Location normalization.

Free-text city/state input ("Maharashtra", "maharashtra", "Thane ") is stored
twice: a canonical form used for comparison and the trimmed display form the
user typed.
"""
import re
import unicodedata

_NON_WORD = re.compile(r'[^\w\s]')
_SPACES = re.compile(r'\s+')

_PASSTHROUGH_FIELDS = ('building', 'locality', 'line1', 'pin_code')


def normalize_location(location):
    if not location or not isinstance(location, str):
        return ''
    text = unicodedata.normalize('NFD', location.strip().lower())
    text = ''.join(ch for ch in text if not unicodedata.combining(ch))
    text = _NON_WORD.sub('', text)
    return _SPACES.sub(' ', text).strip()


def create_location_data(location):
    return {
        'normalized': normalize_location(location),
        'display': location.strip() if isinstance(location, str) else '',
    }


def normalize_address(address):
    if not address:
        return {}
    normalized = {}
    if address.get('state'):
        normalized['state'] = normalize_location(address['state'])
        normalized['state_display'] = address['state'].strip()
    if address.get('city'):
        normalized['city'] = normalize_location(address['city'])
        normalized['city_display'] = address['city'].strip()
    for field in _PASSTHROUGH_FIELDS:
        if address.get(field):
            normalized[field] = address[field]
    return normalized
