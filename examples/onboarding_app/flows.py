"""Conditions and link functions referenced from flow.yaml."""


def is_manager(ctx):
    return ctx.get("role") == "manager"


def after_role(ctx):
    return "team" if is_manager(ctx) else "setup"
