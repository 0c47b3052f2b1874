import inquirer


def prompt_user_choice(
    choices: list[str], prompt_message: str = "Please select an option:"
) -> str | None:
    """
    Prompt user to select from a list of choices using inquirer.

    Args:
        choices: List of strings to choose from
        prompt_message: Message to display to user

    Returns:
        Selected choice string, or None if cancelled
    """
    if not choices:
        return None

    try:
        questions = [
            inquirer.List(
                "choice",
                message=prompt_message,
                choices=choices,
            ),
        ]
        answers = inquirer.prompt(questions)
        return answers["choice"] if answers else None

    except KeyboardInterrupt:
        return None


def prompt_confirm(message: str, default: bool = False) -> bool:
    """
    Ask a yes/no question.

    Returns:
        The user's answer; False if the prompt is cancelled
    """
    try:
        questions = [
            inquirer.Confirm("confirm", message=message, default=default),
        ]
        answers = inquirer.prompt(questions)
        return bool(answers and answers["confirm"])

    except KeyboardInterrupt:
        return False
