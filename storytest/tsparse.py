"""
Structural diagnostics for generated TypeScript test files.

A single pass over the source tracks string, template and regex literals,
comments and a bracket stack. It reports what a compiler would reject before
type checking even starts (unterminated literals, unbalanced brackets) plus two
environment checks that matter for Playwright tests: module specifiers that only
resolve through path aliases, and browser globals referenced outside a
browser-context callback. Diagnostic codes mirror the TypeScript compiler's.
"""

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

OPENERS = {'(': ')', '[': ']', '{': '}', '${': '}'}

BROWSER_GLOBALS = frozenset(['document', 'window', 'HTMLElement', 'HTMLInputElement', 'Element'])
BROWSER_CALLBACKS = frozenset([
    'evaluate', 'addInitScript', '$eval', '$$eval', 'evaluateHandle', 'waitForFunction',
])
ALIAS_PREFIXES = ('@pages', '@utils', '@/')

# Keywords after which a slash starts a regex literal rather than a division
_REGEX_KEYWORDS = frozenset([
    'return', 'typeof', 'case', 'in', 'of', 'new', 'delete', 'void', 'throw', 'instanceof', 'yield', 'await',
])

DOM_NAME_MESSAGES = tuple(f"Cannot find name '{name}'" for name in sorted(BROWSER_GLOBALS))
DOM_USAGE_MARKERS = ('document.', 'window.', 'HTMLElement', 'HTMLInputElement')


@dataclass(frozen=True)
class Diagnostic:
    line: int
    character: int
    message: str
    code: int


@dataclass
class _Open:
    char: str
    line: int
    character: int
    browser: bool


class _Scanner:
    """Single-pass lexer. Collects diagnostics and import specifiers."""

    def __init__(self, source: str):
        self.src = source
        self.n = len(source)
        self.i = 0
        self.line = 1
        self.col = 1
        self.stack: List[_Open] = []
        self.diagnostics: List[Diagnostic] = []
        self.imports: List[Tuple[str, int, int]] = []
        # Last two significant tokens as (kind, value)
        self.tokens: List[Tuple[str, str]] = []

    # ── helpers ──────────────────────────────────────────────────────

    def _peek(self, offset: int = 0) -> str:
        j = self.i + offset
        return self.src[j] if j < self.n else ''

    def _advance(self, count: int = 1) -> None:
        for _ in range(count):
            if self.i >= self.n:
                return
            if self.src[self.i] == '\n':
                self.line += 1
                self.col = 1
            else:
                self.col += 1
            self.i += 1

    def _report(self, line: int, character: int, message: str, code: int) -> None:
        self.diagnostics.append(Diagnostic(line, character, message, code))

    def _push_token(self, kind: str, value: str) -> None:
        self.tokens = (self.tokens + [(kind, value)])[-2:]

    def _last(self, back: int = 1) -> Tuple[str, str]:
        return self.tokens[-back] if len(self.tokens) >= back else ('', '')

    def _in_browser_context(self) -> bool:
        return bool(self.stack) and self.stack[-1].browser

    def _regex_allowed(self) -> bool:
        kind, value = self._last()
        if kind in ('', 'punct', 'open'):
            return True
        return kind == 'ident' and value in _REGEX_KEYWORDS

    # ── main loop ────────────────────────────────────────────────────

    def scan(self) -> None:
        self._code(in_template=False)
        for opened in self.stack:
            self._report(opened.line, opened.character, f"'{OPENERS[opened.char]}' expected.", 1005)

    def _code(self, in_template: bool) -> bool:
        """Scan code. Inside a template expression, returns True at its closing brace."""
        while self.i < self.n:
            ch = self._peek()
            nxt = self._peek(1)

            if ch.isspace():
                self._advance()
            elif ch == '/' and nxt == '/':
                while self.i < self.n and self._peek() != '\n':
                    self._advance()
            elif ch == '/' and nxt == '*':
                self._block_comment()
            elif ch in ('"', "'"):
                self._string(ch)
            elif ch == '`':
                self._template()
            elif ch == '/' and self._regex_allowed():
                self._regex()
            elif ch.isalpha() or ch in ('_', '$'):
                self._identifier()
            elif ch.isdigit():
                while self.i < self.n and (self._peek().isalnum() or self._peek() in '._'):
                    self._advance()
                self._push_token('num', '')
            elif ch in '([{':
                self._open(ch)
            elif ch == '}' and in_template and self.stack and self.stack[-1].char == '${':
                self.stack.pop()
                self._advance()
                return True
            elif ch in ')]}':
                self._close(ch)
            else:
                self._push_token('punct', ch)
                self._advance()
        return False

    # ── literals and comments ────────────────────────────────────────

    def _block_comment(self) -> None:
        line, col = self.line, self.col
        self._advance(2)
        while self.i < self.n:
            if self._peek() == '*' and self._peek(1) == '/':
                self._advance(2)
                return
            self._advance()
        self._report(line, col, "'*/' expected.", 1010)

    def _string(self, quote: str) -> None:
        line, col = self.line, self.col
        self._advance()
        chars: List[str] = []
        while self.i < self.n:
            ch = self._peek()
            if ch == '\\':
                chars.append(self._peek(1))
                self._advance(2)
                continue
            if ch == quote:
                self._advance()
                self._record_import(''.join(chars), line, col)
                self._push_token('string', ''.join(chars))
                return
            if ch == '\n':
                break
            chars.append(ch)
            self._advance()
        self._report(line, col, "Unterminated string literal.", 1002)
        self._push_token('string', ''.join(chars))

    def _template(self) -> None:
        line, col = self.line, self.col
        self._advance()
        while self.i < self.n:
            ch = self._peek()
            if ch == '\\':
                self._advance(2)
            elif ch == '`':
                self._advance()
                self._push_token('string', '')
                return
            elif ch == '$' and self._peek(1) == '{':
                self.stack.append(_Open('${', self.line, self.col, self._in_browser_context()))
                self._advance(2)
                self.tokens = []
                if not self._code(in_template=True):
                    break
            else:
                self._advance()
        self._report(line, col, "Unterminated template literal.", 1160)
        self._push_token('string', '')

    def _regex(self) -> None:
        self._advance()
        in_class = False
        while self.i < self.n:
            ch = self._peek()
            if ch == '\n':
                break
            if ch == '\\':
                self._advance(2)
                continue
            if ch == '[':
                in_class = True
            elif ch == ']':
                in_class = False
            elif ch == '/' and not in_class:
                self._advance()
                while self.i < self.n and self._peek().isalpha():
                    self._advance()
                break
            self._advance()
        self._push_token('regex', '')

    # ── identifiers and brackets ─────────────────────────────────────

    def _identifier(self) -> None:
        line, col = self.line, self.col
        start = self.i
        while self.i < self.n and (self._peek().isalnum() or self._peek() in ('_', '$')):
            self._advance()
        word = self.src[start:self.i]

        if word in BROWSER_GLOBALS and self._last() != ('punct', '.') and not self._in_browser_context():
            self._report(line, col, f"Cannot find name '{word}'.", 2304)

        self._push_token('ident', word)

    def _open(self, ch: str) -> None:
        kind, value = self._last()
        callback = ch == '(' and kind == 'ident' and value in BROWSER_CALLBACKS
        self.stack.append(_Open(ch, self.line, self.col, callback or self._in_browser_context()))
        self._push_token('open', ch)
        self._advance()

    def _close(self, ch: str) -> None:
        line, col = self.line, self.col
        self._advance()
        self._push_token('close', ch)

        if not self.stack:
            self._report(line, col, "Declaration or statement expected.", 1128)
            return

        expected = OPENERS[self.stack[-1].char]
        if ch == expected:
            self.stack.pop()
            return

        self._report(line, col, f"'{expected}' expected.", 1005)
        # Recover by unwinding to the nearest opener this bracket closes
        for idx in range(len(self.stack) - 1, -1, -1):
            if OPENERS[self.stack[idx].char] == ch:
                del self.stack[idx:]
                return

    def _record_import(self, specifier: str, line: int, col: int) -> None:
        last_kind, last_value = self._last()
        if last_kind == 'ident' and last_value in ('from', 'import'):
            self.imports.append((specifier, line, col))
        elif (last_kind, last_value) == ('open', '(') and self._last(2)[1] in ('require', 'import'):
            self.imports.append((specifier, line, col))


def _resolves(specifier: str, base_dir: Optional[Path]) -> bool:
    if specifier.startswith(ALIAS_PREFIXES):
        return False
    if not specifier.startswith(('./', '../')):
        # Bare package specifiers are assumed to be installed
        return True
    if base_dir is None:
        return False
    target = base_dir / specifier
    candidates = [target] + [target.with_name(target.name + ext) for ext in ('.ts', '.tsx', '.js')]
    candidates.append(target / 'index.ts')
    return any(c.is_file() for c in candidates)


def collect_diagnostics(source: str, base_dir: Optional[Path] = None) -> List[Diagnostic]:
    """
    Structural diagnostics for one TypeScript source.

    Args:
        source: TypeScript source text
        base_dir: Directory relative imports resolve against (unresolved if None)

    Returns:
        Diagnostics ordered by position
    """
    scanner = _Scanner(source)
    scanner.scan()

    diagnostics = list(scanner.diagnostics)
    for specifier, line, col in scanner.imports:
        if not _resolves(specifier, base_dir):
            diagnostics.append(Diagnostic(
                line, col,
                f"Cannot find module '{specifier}' or its corresponding type declarations.",
                2307,
            ))

    return sorted(diagnostics, key=lambda d: (d.line, d.character))


def should_ignore_diagnostic(message: str, source: str) -> bool:
    """Drop diagnostics that are false positives for Playwright test files."""
    if any(f"Cannot find module '{prefix}" in message for prefix in ALIAS_PREFIXES):
        return True

    if any(m in message for m in DOM_NAME_MESSAGES):
        return not any(marker in source for marker in DOM_USAGE_MARKERS)

    return False
