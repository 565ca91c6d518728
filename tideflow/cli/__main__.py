"""Entry point for `python -m tideflow.cli` invocation."""


def main():
    """Run the CLI with proper program name."""
    from tideflow.cli.app import app

    app(prog_name="tideflow")


if __name__ == "__main__":
    main()
