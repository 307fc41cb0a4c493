"""
Statement splitting for migration scripts.

Turns one script's raw text into the ordered list of statements that are
executed one by one. The ';' terminator only ends a statement outside of:

- single-quoted string literals ('it''s' escapes a quote by doubling it)
- double-quoted identifiers ("My Table")
- dollar-quoted literals ($$ ... $$, used for CQL function bodies)
- line comments (-- and //) and block comments (/* ... */)

Comments are stripped from the output. Statements that are empty after
trimming are dropped, so a script holding only comments and whitespace
yields no statements at all.

Splitting is pure, so a script can be split again if execution has to start
over.

Example:
    >>> split_statements("INSERT INTO t (v) VALUES ('a;b'); -- done")
    ["INSERT INTO t (v) VALUES ('a;b')"]
"""

TERMINATOR = ";"


class StatementSplitter:
    """Scanner that splits script text into executable statements."""

    def split(self, script: str) -> list[str]:
        """
        Split script text into trimmed, non-empty statements.

        Args:
            script: Raw migration script text

        Returns:
            Statements in script order, without terminators or comments
        """
        statements: list[str] = []
        current: list[str] = []
        i = 0
        length = len(script)

        while i < length:
            char = script[i]
            pair = script[i : i + 2]

            if char in ("'", '"'):
                end = self._end_of_quoted(script, i, char)
                current.append(script[i:end])
                i = end
            elif pair == "$$":
                close = script.find("$$", i + 2)
                end = length if close == -1 else close + 2
                current.append(script[i:end])
                i = end
            elif pair in ("--", "//"):
                newline = script.find("\n", i)
                i = length if newline == -1 else newline
            elif pair == "/*":
                close = script.find("*/", i + 2)
                i = length if close == -1 else close + 2
                # Keep tokens on either side of the comment apart
                current.append(" ")
            elif char == TERMINATOR:
                self._flush(current, statements)
                i += 1
            else:
                current.append(char)
                i += 1

        self._flush(current, statements)
        return statements

    @staticmethod
    def _end_of_quoted(script: str, start: int, quote: str) -> int:
        """Return the index just past the literal opened at start."""
        i = start + 1
        length = len(script)
        while i < length:
            if script[i] == quote:
                # A doubled quote is an escaped quote inside the literal
                if i + 1 < length and script[i + 1] == quote:
                    i += 2
                    continue
                return i + 1
            i += 1
        return length

    @staticmethod
    def _flush(current: list[str], statements: list[str]) -> None:
        statement = "".join(current).strip()
        current.clear()
        if statement:
            statements.append(statement)


_default_splitter = StatementSplitter()


def split_statements(script: str) -> list[str]:
    """Split script text with the default StatementSplitter."""
    return _default_splitter.split(script)
