import re

import inflect
from slugify import slugify

p = inflect.engine()


def split_camel_case(word: str) -> str:
    """Split PascalCase or camelCase into space-separated words."""
    return re.sub(r'(?<!^)(?=[A-Z])', ' ', word)


def to_snake_case(phrase: str) -> str:
    return slugify(phrase, separator="_")


def singularize(word: str) -> str:
    # singular_noun returns False when the word is already singular
    return p.singular_noun(word) or word
