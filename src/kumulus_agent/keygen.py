"""Provider key generation (``kumulus-agent-keygen`` console script)."""

import click

from kumulus_agent.services.identity import (
    SEED_PHRASE_WORD_COUNTS,
    derive_identity,
    generate_seed_phrase,
)


@click.command()
@click.option(
    "--words",
    type=click.Choice([str(n) for n in sorted(SEED_PHRASE_WORD_COUNTS)]),
    default="12",
    show_default=True,
    help="Number of words in the seed phrase",
)
def main(words: str) -> None:
    """Create a new provider identity.

    Prints a fresh seed phrase and the address it signs as. Register the
    address with the control plane and give the phrase to the agent through
    the MNEMONIC (or KUMULUS_MNEMONIC) environment variable.
    """
    phrase = generate_seed_phrase(int(words))
    identity = derive_identity(phrase)

    click.echo(f"MNEMONIC={phrase}")
    click.echo(f"Provider address: {identity.address}")
    click.echo("Keep the seed phrase secret; anyone holding it can sign as this provider.", err=True)


if __name__ == "__main__":
    main()
