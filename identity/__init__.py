# Identity Resolution Module
# Subject name normalization shared by the aggregator and the exposure caps

from .name_normalizer import normalize_subject_name, remove_accents, subjects_match

__all__ = [
    'normalize_subject_name',
    'remove_accents',
    'subjects_match',
]
