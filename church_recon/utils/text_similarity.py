"""
Name similarity scoring using rapidfuzz.
"""

from rapidfuzz import fuzz


def name_similarity(key_a: str, key_b: str) -> float:
    """
    Similarity between two normalized keys on a 0-100 scale.

    Token order is ignored ("silva joao" == "joao silva"). Two empty keys
    are identical (100); an empty key against a non-empty one scores 0.
    """
    if not key_a and not key_b:
        return 100.0
    if not key_a or not key_b:
        return 0.0
    return float(fuzz.token_sort_ratio(key_a, key_b, processor=None))

