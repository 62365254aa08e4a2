import logging

from prompt_toolkit import prompt
from prompt_toolkit.formatted_text import FormattedText

from fabjoin.common.errors import MalformedInputError
from fabjoin.cli.output import print_cli, style_template


logger = logging.getLogger(__name__)


def parse_index(text):
    value = text.strip() if text is not None else ""
    try:
        return int(value)
    except ValueError as e:
        raise MalformedInputError(f"Selection '{value}' is not a numeric index", e)


def parse_answer(text):
    return (text or "").strip().upper() == "Y"


class Chooser:
    """Operator decisions taken while bootstrapping.

    select() returns the index of the chosen candidate, confirm() a yes/no
    answer. Range checks are left to the caller.
    """

    def select(self, candidates, label, name_field):
        raise NotImplementedError

    def confirm(self, question):
        raise NotImplementedError


class TerminalChooser(Chooser):
    def __init__(self, prompt_func=None):
        self._prompt = prompt_func or prompt

    def select(self, candidates, label, name_field):
        print_cli(f"Found the following {label}:", style="info")
        for index, candidate in enumerate(candidates):
            print_cli(
                f"{index} -> {candidate.get(name_field)} ({candidate.get('_id')})",
                style="listing",
            )

        text = self._prompt(FormattedText([("class:prompt", "\t=> ")]), style=style_template)
        logger.debug(f"Operator typed {text!r} for {label}")
        return parse_index(text)

    def confirm(self, question):
        text = self._prompt(FormattedText([("class:prompt", f"{question} (y/n) ")]), style=style_template)
        return parse_answer(text)


class ScriptedChooser(Chooser):
    """Answers taken from a list, for unattended runs."""

    def __init__(self, selections=None, confirmations=None):
        self.selections = list(selections or [])
        self.confirmations = list(confirmations or [])
        self.asked = []

    def select(self, candidates, label, name_field):
        self.asked.append(label)
        if not self.selections:
            raise MalformedInputError(f"No scripted selection left for {label}")
        return parse_index(str(self.selections.pop(0)))

    def confirm(self, question):
        self.asked.append(question)
        if not self.confirmations:
            return False
        answer = self.confirmations.pop(0)
        if isinstance(answer, bool):
            return answer
        return parse_answer(answer)
