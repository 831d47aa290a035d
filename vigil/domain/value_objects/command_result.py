from dataclasses import dataclass


@dataclass(frozen=True)
class CommandResult:
    """
    Value Object holding the exit status and output of one remote command.
    """
    exit_status: int
    output_lines: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def output(self) -> str:
        return "\n".join(self.output_lines)

    def contains(self, text: str) -> bool:
        return any(text in line for line in self.output_lines)
