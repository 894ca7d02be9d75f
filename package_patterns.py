"""
Include/exclude pattern engine for deployment packages.

Exclude and include lists are merged into one ordered rule stack and every
candidate path is decided by the last rule that matches it. Patterns follow
ignore-file conventions: `**` spans directories, a pattern without a slash
matches a name at any depth, and a pattern matching a directory also matches
everything below it.
"""

import glob
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Union

from package_errors import EmptySelectionError, PatternSyntaxError

NEGATION_PREFIX = '!'

PatternScope = Union[None, str, Iterable[str]]


@dataclass(frozen=True)
class Rule:
    """One compiled pattern with the disposition it applies when it matches."""
    pattern: str
    include: bool
    regex: re.Pattern
    anchored: bool
    dir_only: bool

    def matches(self, path: str) -> bool:
        parts = path.split('/')
        # The last component is the file itself; directory-only rules skip it.
        last = len(parts) - 1 if self.dir_only else len(parts)
        if self.anchored:
            return any(self.regex.match('/'.join(parts[:i + 1])) for i in range(last))
        return any(self.regex.match(part) for part in parts[:last])


def merge_patterns(*scopes: PatternScope) -> List[str]:
    """Concatenate pattern lists from outermost to innermost scope."""
    merged: List[str] = []
    for scope in scopes:
        if scope is None:
            continue
        if isinstance(scope, str):
            scope = [scope]
        for pattern in scope:
            if not isinstance(pattern, str):
                raise PatternSyntaxError("Patterns must be strings", pattern=repr(pattern))
            merged.append(pattern)
    return merged


def _reversed_range(body: str) -> Optional[str]:
    """Return the first `x-y` range with x > y inside a bracket expression, if any.

    Brackets are scanned per path segment the way glob does; an unclosed `[`
    is a literal.
    """
    for segment in body.split('/'):
        i, n = 0, len(segment)
        while i < n:
            if segment[i] != '[':
                i += 1
                continue
            j = i + 1
            if j < n and segment[j] == '!':
                j += 1
            if j < n and segment[j] == ']':
                j += 1
            while j < n and segment[j] != ']':
                j += 1
            if j >= n:
                i += 1
                continue
            chars = segment[i + 1:j]
            if chars.startswith('!'):
                chars = chars[1:]
            k = 0
            while k + 2 < len(chars):
                if chars[k + 1] == '-':
                    if chars[k] > chars[k + 2]:
                        return chars[k:k + 3]
                    k += 3
                else:
                    k += 1
            i = j + 1
    return None


def compile_rule(pattern: str, include: bool, unit: Optional[str] = None) -> Rule:
    """Compile a single pattern (without its `!` prefix) into a Rule."""
    body = pattern
    anchored = False
    while body.startswith('./'):
        body = body[2:]
        anchored = True
    if body.startswith('/'):
        body = body.lstrip('/')
        anchored = True
    dir_only = body.endswith('/')
    body = body.rstrip('/')

    if not body or body == '.':
        raise PatternSyntaxError("Pattern selects nothing", unit=unit, pattern=pattern)
    if '\x00' in body:
        raise PatternSyntaxError("Pattern contains a NUL character", unit=unit, pattern=pattern)
    if '..' in body.split('/'):
        raise PatternSyntaxError("Pattern escapes the package root", unit=unit, pattern=pattern)

    bad_range = _reversed_range(body)
    if bad_range:
        raise PatternSyntaxError(f"Invalid glob: reversed range '{bad_range}'", unit=unit, pattern=pattern)

    anchored = anchored or '/' in body
    try:
        regex = re.compile(glob.translate(body, recursive=True, include_hidden=True, seps='/'))
    except (re.error, ValueError) as e:
        raise PatternSyntaxError(f"Invalid glob: {e}", unit=unit, pattern=pattern) from e

    return Rule(pattern=pattern, include=include, regex=regex, anchored=anchored, dir_only=dir_only)


def _compile_list(patterns: Sequence[str], default_include: bool, unit: Optional[str]) -> List[Rule]:
    rules = []
    for pattern in patterns:
        if pattern.startswith(NEGATION_PREFIX):
            rules.append(compile_rule(pattern[1:], not default_include, unit))
        else:
            rules.append(compile_rule(pattern, default_include, unit))
    return rules


def build_rule_stack(exclude: PatternScope = None, include: PatternScope = None,
                     unit: Optional[str] = None) -> List[Rule]:
    """Build the ordered rule stack: exclude rules first, then include rules."""
    return (_compile_list(merge_patterns(exclude), False, unit)
            + _compile_list(merge_patterns(include), True, unit))


def is_selected(path: str, rules: Sequence[Rule]) -> bool:
    """Return the disposition of the last matching rule; unmatched paths are selected."""
    for rule in reversed(rules):
        if rule.matches(path):
            return rule.include
    return True


def resolve_file_paths(candidates: Iterable[str], exclude: PatternScope = None,
                       include: PatternScope = None, unit: Optional[str] = None,
                       root: Optional[str] = None) -> List[str]:
    """Select the candidate paths that survive the merged rule stack.

    The result keeps candidate order with duplicates removed. An empty
    candidate set or an empty result raises EmptySelectionError.
    """
    rules = build_rule_stack(exclude, include, unit)

    candidates = list(candidates)
    if not candidates:
        raise EmptySelectionError("No files found to package", unit=unit, root=root)

    seen = set()
    selected: List[str] = []
    for path in candidates:
        if path in seen:
            continue
        seen.add(path)
        if is_selected(path, rules):
            selected.append(path)

    if not selected:
        raise EmptySelectionError("Include/exclude patterns left no files to package",
                                  unit=unit, root=root)
    return selected
