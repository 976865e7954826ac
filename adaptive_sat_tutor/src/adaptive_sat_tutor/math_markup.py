"""
Math Markup Normalization

Deterministic rewrite pipeline that turns LLM-produced Markdown+LaTeX into
text a remark-math/KaTeX style renderer accepts without parse errors.

Each pass is a pure str -> str function and the passes run in a fixed
order: later passes assume the normal form produced by earlier ones.
While content is still streaming the pipeline is skipped entirely
(see render_markdown_math).
"""

import re
from typing import Callable, List, Match, Optional, Tuple

MAX_FIXED_POINT_ITERATIONS = 50

# Any math span: $$...$$ (may span lines) or a single-line $...$
MATH_SPAN_RE = re.compile(
    r'(?<!\\)\$\$[\s\S]+?\$\$'
    r'|(?<![\\$])\$(?!\$)(?:\\.|[^$\n\\])+?\$'
)

# Single-line inline span; group 1 is the content
INLINE_SPAN_RE = re.compile(r'(?<![\\$])\$(?!\$)((?:\\.|[^$\n\\])+?)\$(?!\$)')

COMPARISON_RE = re.compile(r'=|<|>|\\(?:leq|geq|neq|le|ge|ne|lt|gt)(?![a-zA-Z])')

LIST_ITEM_RE = re.compile(r'^([ \t]*)([-*+]|\d+[.)])[ \t]+(.*)$')

SINGLE_DISPLAY_RE = re.compile(r'^(.*?)\$\$([^$\n]+?)\$\$(.*)$')

# Words that commonly end up glued to a single-letter variable
VARIABLE_TRAILING_WORDS = (
    "of", "when", "into", "for", "and", "is", "then", "where", "from",
    "with", "that", "than", "equals", "gives",
)
VARIABLE_LEADING_WORDS = (
    "of", "when", "into", "for", "is", "then", "where", "from",
    "with", "that", "than", "equals", "gives",
)

MATH_FUNCTION_NAMES = frozenset({
    "sin", "cos", "tan", "log", "exp", "max", "min", "lim", "det", "gcd", "lcm", "mod",
})


def _until_stable(fn: Callable[[str], str], text: str, max_iterations: int = MAX_FIXED_POINT_ITERATIONS) -> str:
    """Re-apply fn until the output stops changing (capped)."""
    for _ in range(max_iterations):
        updated = fn(text)
        if updated == text:
            break
        text = updated
    return text


def map_outside_math(text: str, fn: Callable[[str], str]) -> str:
    """
    Apply fn only to the segments of text outside $...$ / $$...$$ spans.

    A single $ left unpaired on its line opens math that runs to the end
    of that line; fn never sees it (close_unclosed_expressions owns it).
    """
    parts = []
    last = 0
    for match in MATH_SPAN_RE.finditer(text):
        parts.append(_map_prose_lines(text[last:match.start()], fn))
        parts.append(match.group(0))
        last = match.end()
    parts.append(_map_prose_lines(text[last:], fn))
    return ''.join(parts)


def _map_prose_lines(segment: str, fn: Callable[[str], str]) -> str:
    if '$' not in segment:
        return fn(segment)
    out = []
    for line in segment.split('\n'):
        positions = _single_dollar_positions(line)
        if positions:
            out.append(fn(line[:positions[0]]) + line[positions[0]:])
        else:
            out.append(fn(line))
    return '\n'.join(out)


def _map_lines(text: str, fn: Callable[[str], str]) -> str:
    return '\n'.join(fn(line) for line in text.split('\n'))


def _single_dollar_positions(line: str) -> List[int]:
    """Positions of unescaped single $ (a $$ pair is skipped as one token)."""
    positions = []
    i = 0
    while i < len(line):
        ch = line[i]
        if ch == '\\':
            i += 2
            continue
        if ch == '$':
            if line.startswith('$$', i):
                i += 2
                continue
            positions.append(i)
        i += 1
    return positions


def _content_indent(line: str) -> str:
    item = LIST_ITEM_RE.match(line)
    if item:
        indent, marker, _ = item.groups()
        return indent + ' ' * (len(marker) + 1)
    return line[:len(line) - len(line.lstrip())]


def _insert_before_trailing_punctuation(line: str, token: str) -> str:
    stripped = line.rstrip()
    match = re.search(r'[.,;:!?]+$', stripped)
    if match and match.start() > 0:
        return stripped[:match.start()] + token + stripped[match.start():]
    return stripped + token


# ---------------------------------------------------------------------------
# 1. Escape-corruption recovery
# ---------------------------------------------------------------------------

def fix_corrupted_latex(text: str) -> str:
    """
    Restore LaTeX commands whose backslash was eaten by JSON escape decoding.

    Inside a JSON string "\\neq" arrives as newline + "eq", "\\frac" as
    form feed + "rac", "\\right" as carriage return + "ight", and so on.
    """
    s = text
    # \n (newline) -> \neq, \neg, \nabla, \not, \notin, \nleq, \ngeq, \nmid
    s = re.sub(r'\n(eq|eg|abla|ot|otin|leq|geq|mid)(?![a-zA-Z])', r'\\n\1', s)
    # \t (tab) -> \text, \textbf, \times, \theta, \top, \triangle, \tilde
    s = re.sub(r'\t(ext|extbf|extit|imes|heta|op|riangle|ilde)(?![a-zA-Z])', r'\\t\1', s)
    # \nu, \ni, \tan, \to also read as a list line ("\ni) ...") or prose
    s = _restore_inside_open_math(s, re.compile(r'\n(u|i)(?![a-zA-Z])'), '\\n')
    s = _restore_inside_open_math(s, re.compile(r'\t(an|o)(?![a-zA-Z])'), '\\t')
    # \r (carriage return) -> \right, \rangle, \rceil, \rfloor, \rho
    s = re.sub(r'\r(ight|angle|ceil|floor|ho)(?![a-zA-Z])', r'\\r\1', s)
    # \f (form feed) -> \frac, \forall
    s = re.sub(r'\f(rac|orall)(?![a-zA-Z])', r'\\f\1', s)
    # \b (backspace) -> \boxed, \binom, \beta, \bar, \begin, \bmod
    s = re.sub(r'\x08(oxed|inom|eta|ar|egin|mod)(?![a-zA-Z])', r'\\b\1', s)
    return s


def _restore_inside_open_math(text: str, pattern: re.Pattern, command_prefix: str) -> str:
    """Rewrite pattern matches only where a $ or $$ opened earlier on the line is still open."""

    def restore(match: Match) -> str:
        line = text[text.rfind('\n', 0, match.start()) + 1:match.start()]
        if len(_single_dollar_positions(line)) % 2 == 1 or line.count('$$') % 2 == 1:
            return command_prefix + match.group(1)
        return match.group(0)

    return pattern.sub(restore, text)


def recover_escape_corruption(text: str) -> str:
    """JSON-escape damage plus double-escaped commands (\\\\frac -> \\frac)."""
    s = fix_corrupted_latex(text)
    return re.sub(r'\\\\(?=[a-zA-Z])', lambda _: '\\', s)


# ---------------------------------------------------------------------------
# 2. Unicode minus
# ---------------------------------------------------------------------------

def normalize_unicode_minus(text: str) -> str:
    return text.replace('\u2212', '-')


# ---------------------------------------------------------------------------
# 3. Bare inequality recovery
# ---------------------------------------------------------------------------

def recover_bare_inequalities(text: str) -> str:
    """Reattach the backslash to leq/geq/neq, including across a line break."""
    s = re.sub(r'\\[ \t]*\r?\n[ \t]*(leq|geq|neq|le|ge|ne)(?![a-zA-Z])', r'\\\1', text)
    return re.sub(r'(?<![\\a-zA-Z])(leq|geq|neq)(?![a-zA-Z])', r'\\\1', s)


# ---------------------------------------------------------------------------
# 4. Delimiter-style unification
# ---------------------------------------------------------------------------

def unify_delimiters(text: str) -> str:
    """\\( \\) -> $ $ and \\[ \\] -> $$ $$, collapsing redundant wrappers."""
    s = re.sub(r'(?<!\\)\\\(\s*\$([^$\n]+?)\$\s*\\\)', r'$\1$', text)
    s = re.sub(r'(?<!\\)\$\s*\\\(([^$\n]+?)\\\)\s*\$', r'$\1$', s)
    s = re.sub(r'(?<!\\)\\\[\s*\$\$?([^$]+?)\$\$?\s*\\\]', r'$$\1$$', s)
    s = re.sub(r'(?<!\\)\\\((.+?)(?<!\\)\\\)', lambda m: '$' + m.group(1).strip() + '$', s)
    s = re.sub(r'(?<!\\)\\\[([\s\S]+?)(?<!\\)\\\]', r'$$\1$$', s)
    return s


# ---------------------------------------------------------------------------
# 5. Structural bracket stripping
# ---------------------------------------------------------------------------

def strip_structural_brackets(text: str) -> str:
    """$$[ expr ]$$ -> $$expr$$ (intervals, which carry a comma, are kept)."""
    return re.sub(
        r'\$\$[ \t]*\[([^\[\]\n,]+)\][ \t]*\$\$',
        lambda m: '$$' + m.group(1).strip() + '$$',
        text,
    )


# ---------------------------------------------------------------------------
# 6. Display-math isolation
# ---------------------------------------------------------------------------

_GLUED_DISPLAY_RE = re.compile(r'(\$\$[^$]+?\$\$)[ \t]*(?=\$\$)')


def isolate_display_math(text: str) -> str:
    """
    Give display math its own Markdown block.

    Glued $$a$$$$b$$ blocks are split apart; single-line $$...$$ inside a
    list item becomes a three-line fence at the item's content indent; a
    list item directly followed by display math gets a blank indented line
    so the math stays inside the item.
    """
    text = _GLUED_DISPLAY_RE.sub(lambda m: m.group(1) + '\n\n', text)

    out: List[str] = []
    item_indent: Optional[str] = None
    fence_indent: Optional[str] = None
    pending_blank = False

    for line in text.split('\n'):
        stripped = line.strip()

        if fence_indent is not None:
            out.append(fence_indent + stripped)
            if stripped.endswith('$$'):
                fence_indent = None
                pending_blank = True
            continue

        if pending_blank:
            pending_blank = False
            if stripped:
                out.append('')

        item = LIST_ITEM_RE.match(line)
        if item:
            indent, marker, rest = item.groups()
            item_indent = indent + ' ' * (len(marker) + 1)
            display = SINGLE_DISPLAY_RE.match(rest)
            if display and display.group(1).strip():
                before, math, after = display.groups()
                out.append(f"{indent}{marker} {before.rstrip()}")
                out.extend(['', f"{item_indent}$$", f"{item_indent}{math.strip()}", f"{item_indent}$$"])
                if after.strip():
                    out.extend(['', item_indent + after.strip()])
                pending_blank = True
                continue
            out.append(line)
            continue

        if item_indent is not None and stripped.startswith('$$') and out and out[-1].strip():
            out.append(item_indent)
            display = SINGLE_DISPLAY_RE.match(stripped)
            if display and not display.group(1).strip() and not display.group(3).strip():
                out.extend([f"{item_indent}$$", f"{item_indent}{display.group(2).strip()}", f"{item_indent}$$"])
                pending_blank = True
            else:
                out.append(item_indent + stripped)
                if stripped == '$$' or stripped.count('$$') % 2 == 1:
                    fence_indent = item_indent
            continue

        if stripped and not line[:1].isspace():
            item_indent = None
        out.append(line)

    return '\n'.join(out)


# ---------------------------------------------------------------------------
# 7. Stray $$ balancing
# ---------------------------------------------------------------------------

def _closes_later(lines: List[str], index: int) -> bool:
    for later in lines[index + 1:]:
        if not later.strip():
            return False
        if later.count('$$') % 2 == 1:
            return True
    return False


def balance_display_delimiters(text: str) -> str:
    """Fix lines with an odd $$ count and drop empty $$ fences."""
    lines = text.split('\n')
    out: List[str] = []
    in_block = False

    for index, line in enumerate(lines):
        stripped = line.strip()
        count = line.count('$$')
        if in_block:
            if count % 2 == 1:
                in_block = False
            out.append(line)
            continue
        if count % 2 == 0:
            out.append(line)
            continue
        if stripped == '$$':
            in_block = True
            out.append(line)
            continue

        indent = line[:len(line) - len(line.lstrip())]
        starts, ends = stripped.startswith('$$'), stripped.endswith('$$')
        if starts and not ends:
            if _closes_later(lines, index):
                in_block = True
                out.append(line)
                continue
            line = line.rstrip() + '$$'
        elif ends and not starts:
            line = indent + '$$' + stripped
        elif starts and ends:
            cut = line.rstrip().rfind('$$')
            line = line[:cut].rstrip()
        else:
            line = line.rstrip() + '$$'
        out.append(line)

    return _drop_empty_display_fences('\n'.join(out))


def _drop_empty_display_fences(text: str) -> str:
    lines = text.split('\n')
    out: List[str] = []
    in_block = False
    i = 0
    while i < len(lines):
        stripped = lines[i].strip()
        if re.fullmatch(r'\$\$[ \t]*\$\$', stripped):
            i += 1
            continue
        if stripped == '$$':
            if not in_block:
                j = i + 1
                while j < len(lines) and not lines[j].strip():
                    j += 1
                if j < len(lines) and lines[j].strip() == '$$':
                    i = j + 1
                    continue
            in_block = not in_block
        out.append(lines[i])
        i += 1
    return '\n'.join(out)


# ---------------------------------------------------------------------------
# 8. Step splitting
# ---------------------------------------------------------------------------

def split_inline_steps(text: str) -> str:
    """Adjacent $a = b$ $c = d$ spans go on separate lines (hard break)."""

    def split_line(line: str) -> str:
        spans = list(INLINE_SPAN_RE.finditer(line))
        if len(spans) < 2:
            return line
        indent = _content_indent(line)
        pieces = []
        last = 0
        for left, right in zip(spans, spans[1:]):
            gap = line[left.end():right.start()]
            if gap and not gap.strip(' \t') and COMPARISON_RE.search(left.group(1)) \
                    and COMPARISON_RE.search(right.group(1)):
                pieces.append(line[last:left.end()])
                pieces.append('  \n' + indent)
                last = right.start()
        pieces.append(line[last:])
        return ''.join(pieces)

    return _map_lines(text, split_line)


# ---------------------------------------------------------------------------
# 9. Word / number / variable spacing
# ---------------------------------------------------------------------------

_WORD_DIGIT_RE = re.compile(r'(?<![\w/.\-#\\])([A-Za-z]{2,})(?=\d)')
_VARIABLE_THEN_WORD_RE = re.compile(r'\b([xyz])(' + '|'.join(VARIABLE_TRAILING_WORDS) + r')\b')
_WORD_THEN_VARIABLE_RE = re.compile(r'\b(' + '|'.join(VARIABLE_LEADING_WORDS) + r')([xyz])\b')


def _space_prose_tokens(segment: str) -> str:
    s = _WORD_DIGIT_RE.sub(r'\1 ', segment)
    s = _VARIABLE_THEN_WORD_RE.sub(r'\1 \2', s)
    return _WORD_THEN_VARIABLE_RE.sub(r'\1 \2', s)


def repair_word_spacing(text: str) -> str:
    """Split word+digit and variable+word runs outside math until stable."""
    return _until_stable(lambda s: map_outside_math(s, _space_prose_tokens), text)


# ---------------------------------------------------------------------------
# 10. Delimiter adjacency spacing
# ---------------------------------------------------------------------------

def space_math_adjacency(text: str) -> str:
    """At least one space between a math span and adjacent prose; after colons."""
    pieces = []
    last = 0
    for match in MATH_SPAN_RE.finditer(text):
        preceding = text[match.start() - 1:match.start()]
        pieces.append(text[last:match.start()])
        if preceding.isalnum() or preceding == ':':
            pieces.append(' ')
        pieces.append(match.group(0))
        following = text[match.end():match.end() + 1]
        if following.isalnum():
            pieces.append(' ')
        last = match.end()
    pieces.append(text[last:])
    spaced = ''.join(pieces)
    return map_outside_math(spaced, lambda seg: re.sub(r'(?<=[^\d\s:]):(?=[A-Za-z0-9$\\])', ': ', seg))


# ---------------------------------------------------------------------------
# 11. Bare-LaTeX wrapping
# ---------------------------------------------------------------------------

_BRACED = r'\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}'

_LEFT_RIGHT_RE = re.compile(r'\\left(?:\\[{|]|[(\[|.])[^\n$]*?\\right(?:\\[}|]|[)\]|.])')
_FRAC_RE = re.compile(r'\\[dt]?frac' + _BRACED + _BRACED)
_SQRT_RE = re.compile(r'\\sqrt(?:\[[^\]\n]*\])?' + _BRACED)
_BARE_COMPARISON_RE = re.compile(
    r'(?:[\w.^{}()+\-]+[ \t]*)?'
    r'(?:\\not[ \t]*)?\\(?:leq|geq|neq|le|ge|ne|lt|gt|approx|equiv)(?![a-zA-Z])'
    r'(?:[ \t]*-?[\w.^{}()]+)?'
)
_BARE_OPERATOR_RE = re.compile(
    r'\\(?:cdot|times|div|pm|mp|infty|pi|theta|alpha|beta|gamma|delta|lambda|mu|sigma|omega'
    r'|Delta|circ|angle|degree)(?![a-zA-Z])'
)

BARE_LATEX_PATTERNS: Tuple[re.Pattern, ...] = (
    _LEFT_RIGHT_RE,  # first, so its interior is not wrapped piecemeal
    _FRAC_RE,
    _SQRT_RE,
    _BARE_COMPARISON_RE,
    _BARE_OPERATOR_RE,
)


def _wrap(match: Match) -> str:
    return '$' + match.group(0).strip() + '$'


def wrap_bare_latex(text: str) -> str:
    """Wrap LaTeX commands that sit outside any math span in $...$."""
    for pattern in BARE_LATEX_PATTERNS:
        text = map_outside_math(text, lambda seg, p=pattern: p.sub(_wrap, seg))
    return text


# ---------------------------------------------------------------------------
# 12. Fragmented \left ... \right merging
# ---------------------------------------------------------------------------

def _unbalanced_left(content: str) -> int:
    return len(re.findall(r'\\left(?![a-zA-Z])', content)) - len(re.findall(r'\\right(?![a-zA-Z])', content))


def merge_fragmented_expressions(text: str) -> str:
    """$\\left( a$ b $c \\right)$ -> $\\left( a b c \\right)$."""

    def merge_line(line: str) -> str:
        spans = list(INLINE_SPAN_RE.finditer(line))
        for i, opener in enumerate(spans):
            balance = _unbalanced_left(opener.group(1))
            if balance <= 0:
                continue
            for closer in spans[i + 1:]:
                balance += _unbalanced_left(closer.group(1))
                if balance <= 0:
                    inner = line[opener.start() + 1:closer.end() - 1].replace('$', '')
                    return line[:opener.start()] + '$' + inner + '$' + line[closer.end():]
        return line

    return _map_lines(text, lambda line: _until_stable(merge_line, line))


# ---------------------------------------------------------------------------
# 13. Interior whitespace trim
# ---------------------------------------------------------------------------

def trim_math_interior(text: str) -> str:
    def trim(match: Match) -> str:
        content = match.group(1).strip()
        return '$' + content + '$' if content else match.group(0)

    return INLINE_SPAN_RE.sub(trim, text)


# ---------------------------------------------------------------------------
# 14. Adjacent-span merging
# ---------------------------------------------------------------------------

_MERGEABLE_GAP_RE = re.compile(r'[ \t\d+\-*/=<>^]*[\d+\-*/=<>^][ \t\d+\-*/=<>^]*')


def merge_adjacent_spans(text: str) -> str:
    """$x$ + $3$ = $5$ -> $x + 3 = 5$."""

    def merge_line(line: str) -> str:
        spans = list(INLINE_SPAN_RE.finditer(line))
        for left, right in zip(spans, spans[1:]):
            gap = line[left.end():right.start()]
            if _MERGEABLE_GAP_RE.fullmatch(gap):
                merged = '$' + left.group(1) + gap + right.group(1) + '$'
                return line[:left.start()] + merged + line[right.end():]
        return line

    return _map_lines(text, lambda line: _until_stable(merge_line, line))


# ---------------------------------------------------------------------------
# 15. Unclosed-expression closing
# ---------------------------------------------------------------------------

def close_unclosed_expressions(text: str) -> str:
    """$\\frac{1}{2} with no closing $ gets one at the end of the line."""

    def close_line(line: str) -> str:
        positions = _single_dollar_positions(line)
        if len(positions) % 2 == 0:
            return line
        tail = line[positions[-1] + 1:]
        if re.match(r'\s*\\[a-zA-Z]', tail):
            return _insert_before_trailing_punctuation(line, '$')
        return line

    return _map_lines(text, close_line)


# ---------------------------------------------------------------------------
# 16. Prose-word liberation
# ---------------------------------------------------------------------------

def liberate_prose_words(text: str) -> str:
    """$because$ -> because (English accidentally wrapped in math)."""

    def liberate(match: Match) -> str:
        content = match.group(1)
        if re.fullmatch(r'[A-Za-z]{3,}(?: [A-Za-z]+)*', content) and content.lower() not in MATH_FUNCTION_NAMES:
            return content
        return match.group(0)

    return INLINE_SPAN_RE.sub(liberate, text)


# ---------------------------------------------------------------------------
# 17. Global delimiter spacing
# ---------------------------------------------------------------------------

def _space_pairs_in_line(line: str) -> str:
    out: List[str] = []
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == '\\':
            out.append(line[i:i + 2])
            i += 2
            continue
        if ch != '$':
            out.append(ch)
            i += 1
            continue

        token = '$$' if line.startswith('$$', i) else '$'
        start = i + len(token)
        close = start
        while True:
            close = line.find(token, close)
            if close == -1 or line[close - 1] != '\\':
                break
            close += 1
        if token == '$' and close != -1 and line.startswith('$$', close):
            close = -1
        if close == -1:
            out.append(line[i:])
            break

        content = line[start:close]
        if not content or content[0].isspace() or content[-1].isspace():
            out.append(token)
            i = start
            continue

        previous = out[-1][-1:] if out else ''
        if previous and (previous.isalnum() or previous in ')]}'):
            out.append(' ')
        out.append(token + content + token)
        i = close + len(token)
        if i < n and line[i].isalpha():
            out.append(' ')
    return ''.join(out)


def space_delimiter_pairs(text: str) -> str:
    """Left-to-right scan per line: space out valid $...$ / $$...$$ pairs."""
    return _map_lines(text, _space_pairs_in_line)


# ---------------------------------------------------------------------------
# 18. Multiple-choice literal wrapping
# ---------------------------------------------------------------------------

_CHOICE_LABEL_RE = re.compile(r'(?<![^\s(])([A-D])\)(?=[\w$\\-])')
_CHOICE_NUMBER_RE = re.compile(r'(?<![^\s(])([A-D]\) )(-?\d+(?:\.\d+)?(?:/\d+)?)(?![\w$/])')


def wrap_choice_literals(text: str) -> str:
    """A)5 -> A) $5$."""

    def wrap_segment(segment: str) -> str:
        s = _CHOICE_LABEL_RE.sub(r'\1) ', segment)
        return _CHOICE_NUMBER_RE.sub(r'\1$\2$', s)

    return map_outside_math(text, wrap_segment)


# ---------------------------------------------------------------------------
# 19. Odd-$ safety net
# ---------------------------------------------------------------------------

_MATHY_TAIL_RE = re.compile(r'[\\\d=+\-*/^_<>]|^[A-Za-z](?![A-Za-z])')


def fix_odd_dollar_lines(text: str) -> str:
    """Close or drop the stray $ on a line with an odd count."""

    def fix_line(line: str) -> str:
        positions = _single_dollar_positions(line)
        if len(positions) % 2 == 0:
            return line
        stray = positions[-1]
        tail = line[stray + 1:].strip()
        if tail and _MATHY_TAIL_RE.search(tail):
            return _insert_before_trailing_punctuation(line, '$')
        dropped = line[:stray] + line[stray + 1:]
        return re.sub(r'(?<=\S)  +(?=\S)', ' ', dropped).rstrip()

    return _map_lines(text, fix_line)


# ---------------------------------------------------------------------------
# 20. Final prose spacing
# ---------------------------------------------------------------------------

def _split_negative_number_glue(segment: str) -> str:
    s = re.sub(r'\b([a-z]{2,})-(\d+(?:\.\d+)?)\b', r'\1 -\2', segment)
    return re.sub(r'(-\d+(?:\.\d+)?)(?!(?:st|nd|rd|th)\b)([A-Za-z]{2,})', r'\1 \2', s)


def final_prose_spacing(text: str) -> str:
    return map_outside_math(text, _split_negative_number_glue)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

PIPELINE: Tuple[Tuple[str, Callable[[str], str]], ...] = (
    ("escape_corruption", recover_escape_corruption),
    ("unicode_minus", normalize_unicode_minus),
    ("bare_inequalities", recover_bare_inequalities),
    ("delimiter_style", unify_delimiters),
    ("structural_brackets", strip_structural_brackets),
    ("display_isolation", isolate_display_math),
    ("display_balance", balance_display_delimiters),
    ("step_split", split_inline_steps),
    ("word_spacing", repair_word_spacing),
    ("adjacency_spacing", space_math_adjacency),
    ("bare_latex", wrap_bare_latex),
    ("fragment_merge", merge_fragmented_expressions),
    ("interior_trim", trim_math_interior),
    ("adjacent_merge", merge_adjacent_spans),
    ("unclosed_close", close_unclosed_expressions),
    ("prose_liberation", liberate_prose_words),
    ("pair_spacing", space_delimiter_pairs),
    ("choice_literals", wrap_choice_literals),
    ("odd_dollar", fix_odd_dollar_lines),
    ("prose_spacing", final_prose_spacing),
)


def normalize_math_markup(text: str) -> str:
    """Run every pass, in order, over LLM-generated Markdown+LaTeX."""
    if not text:
        return text
    for _, rewrite in PIPELINE:
        text = rewrite(text)
    return text


def render_markdown_math(text: str, streaming: bool = False) -> str:
    """
    Text ready for the Markdown+math renderer.

    Mid-stream content is returned verbatim; half-written LaTeX would
    misfire the passes. Call again with streaming=False once complete.
    """
    if streaming:
        return text
    return normalize_math_markup(text)
