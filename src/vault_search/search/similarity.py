"""String similarity used for exact filename matching."""


def levenshtein_distance(s1: str, s2: str) -> int:
    """Minimum number of single-character edits turning s1 into s2.

    Examples:
        >>> levenshtein_distance("kitten", "sitting")
        3
        >>> levenshtein_distance("", "abc")
        3
    """
    if not s1:
        return len(s2)
    if not s2:
        return len(s1)

    # Shorter string as columns; two rows suffice
    if len(s1) > len(s2):
        s1, s2 = s2, s1

    prev_row = list(range(len(s1) + 1))
    for j, c2 in enumerate(s2, start=1):
        curr_row = [j]
        for i, c1 in enumerate(s1, start=1):
            cost = 0 if c1 == c2 else 1
            curr_row.append(min(prev_row[i] + 1, curr_row[i - 1] + 1, prev_row[i - 1] + cost))
        prev_row = curr_row
    return prev_row[-1]


def similarity(a: str, b: str, case_sensitive: bool = False) -> float:
    """Edit-distance similarity in [0, 1]; 1 means identical."""
    if not case_sensitive:
        a, b = a.lower(), b.lower()
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return (longest - levenshtein_distance(a, b)) / longest
