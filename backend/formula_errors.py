# File: backend/formula_errors.py
#
# Every failure the engine can raise. Numeric edge cases (divide by zero,
# missing reference) are NOT in here: those evaluate to NaN.


class SimulationError(Exception):
    """Base class for everything the engine raises on purpose."""

    kind = "simulation_error"

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"kind": self.kind, "message": self.message}


# --- Per-expression errors (recovered locally, one formula at a time) ---

class FormulaError(SimulationError):
    kind = "formula_error"


class LexError(FormulaError):
    kind = "lex_error"

    def __init__(self, offset, char):
        super().__init__(f"Invalid character '{char}' at position {offset}")
        self.offset = offset
        self.char = char

    def to_dict(self):
        d = super().to_dict()
        d["offset"] = self.offset
        return d


class ParseError(FormulaError):
    """
    Offsets index the expression exactly as given. When input ends early the
    offset is len(expression), one past the last character, so an editor
    can place the cursor at the end.
    """

    kind = "parse_error"

    def __init__(self, offset, found=None, message=None):
        if message is None:
            if found is None:
                message = f"Unexpected end of expression at position {offset}"
            else:
                message = f"Unexpected token '{found}' at position {offset}"
        super().__init__(message)
        self.offset = offset
        self.found = found

    def to_dict(self):
        d = super().to_dict()
        d["offset"] = self.offset
        return d


class UnknownReferenceError(FormulaError):
    kind = "unknown_reference"

    def __init__(self, names):
        self.names = sorted(names)
        label = "Unknown reference" if len(self.names) == 1 else "Unknown references"
        super().__init__(f"{label}: {', '.join(self.names)}")


class UnknownFunctionError(FormulaError):
    kind = "unknown_function"

    def __init__(self, names):
        self.names = sorted(names)
        label = "Unknown function" if len(self.names) == 1 else "Unknown functions"
        super().__init__(f"{label}: {', '.join(self.names)}")


class NonNumericResultError(FormulaError):
    kind = "non_numeric_result"

    def __init__(self, name, value):
        super().__init__(
            f"'{name}' resolved to {type(value).__name__} {value!r}; a number is required"
        )
        self.name = name
        self.value = value


# --- Whole-run errors ---

class CircularDependencyError(SimulationError):
    kind = "circular_dependency"

    def __init__(self, ids):
        self.ids = list(ids)
        super().__init__(f"Circular formula dependency: {', '.join(self.ids)}")

    def to_dict(self):
        d = super().to_dict()
        d["ids"] = self.ids
        return d


class WorkbookFormatError(SimulationError, ValueError):
    """The workbook payload itself is malformed (missing ids, wrong types)."""

    kind = "workbook_format"


class WorkbookValidationError(SimulationError):
    kind = "validation_error"

    def __init__(self, issues):
        self.issues = list(issues)
        targets = sorted({issue.target_id for issue in self.issues if issue.target_id})
        super().__init__(
            f"Workbook has {len(self.issues)} validation error(s)"
            + (f" in: {', '.join(targets)}" if targets else "")
        )

    def to_dict(self):
        d = super().to_dict()
        d["issues"] = [issue.to_dict() for issue in self.issues]
        return d


class SimulationCancelled(SimulationError):
    kind = "cancelled"

    def __init__(self, message="Simulation was cancelled"):
        super().__init__(message)


class SimulationTimeout(SimulationCancelled):
    kind = "timeout"

    def __init__(self, message="Simulation deadline exceeded"):
        super().__init__(message)
