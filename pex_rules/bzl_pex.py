__doc__ = """bzl-pex builds, runs and tests pex_binary, pex_test and pex_pytest targets
declared in BUILD files, without a Bazel server.

Setting the environment variable PEX_RULES_DEBUG=1 yields additional debug info.
"""

from pex_rules.pex_lib import commands, core, metrics


def main() -> None:
    ap, sp = core.create_parser()
    ap.epilog = __doc__

    commands.register_all(sp)
    with metrics.main_metrics_scope():
        core.main(ap)


if __name__ == "__main__":
    main()
