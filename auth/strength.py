"""
auth/strength.py -- Password strength scoring.

Pure function, no I/O. Used by the password-strength endpoint and the
reset/change password flows to give feedback; it does not block weak
passwords on its own.
"""

from __future__ import annotations

import re

from auth.models import PasswordStrength

_LOWER_RE = re.compile(r"[a-z]")
_UPPER_RE = re.compile(r"[A-Z]")
_DIGIT_RE = re.compile(r"[0-9]+")

# Kept byte-for-byte from the stored pattern. The leading "." means a special
# character only counts when something precedes it, and ",-," inside the class
# is a one-character range (the comma), so "-" itself does not score.
_SPECIAL_RE = re.compile(r".[!,@,#,$,%,^,&,*,?,_,~,-,(,)]")


def check_password(password: str) -> PasswordStrength:
    """Score a candidate password as weak, average or strong.

    Short-circuits to weak for 4 characters or fewer and for fewer than 3
    distinct characters. Otherwise points are summed:

      +1  length >= 6
      +1  length >= 8
      +2  both a lowercase and an uppercase ASCII letter
      +1  a digit
      +1  a special character that is not the first character

    4 points or more is strong, 2 or 3 average, below that weak. Length is
    counted in characters, not bytes.
    """
    password = str(password)
    length = len(password)

    if length <= 4:
        return PasswordStrength.weak

    if len(set(password)) < 3:
        return PasswordStrength.weak

    score = 0
    if length >= 6:
        score += 1
    if length >= 8:
        score += 1
    if _LOWER_RE.search(password) and _UPPER_RE.search(password):
        score += 2
    if _DIGIT_RE.search(password):
        score += 1
    if _SPECIAL_RE.search(password):
        score += 1

    if score >= 4:
        return PasswordStrength.strong
    if score >= 2:
        return PasswordStrength.average
    return PasswordStrength.weak
