# billing/checks.py
"""
System checks for the posting rules.

- billing.E001/E002: a rule references a code that is not in the default
  chart, or whose chart type differs from what the rule expects (static,
  runs on every ``manage.py check``)
- billing.E003/E004: a rule references an account missing from or
  inactive in the database (``manage.py check --database default``)
"""

from django.core.checks import Error, Tags, register

from accounting.chart import default_chart_by_code
from billing.posting_rules import iter_rule_codes


@register()
def check_posting_rules_against_chart(app_configs=None, **kwargs):
    chart = default_chart_by_code()
    errors = []
    for table, key, code, expected_type in iter_rule_codes():
        spec = chart.get(code)
        if spec is None:
            errors.append(Error(
                f"{table}[{key}] references account {code}, which is not in the default chart.",
                hint="Add the account to accounting.chart.DEFAULT_CHART or fix the rule.",
                id="billing.E001",
            ))
        elif spec.account_type != expected_type:
            errors.append(Error(
                f"{table}[{key}] expects a {expected_type} account but {code} is {spec.account_type}.",
                id="billing.E002",
            ))
    return errors


@register(Tags.database)
def check_posting_rules_against_database(app_configs=None, databases=None, **kwargs):
    if not databases:
        return []

    from accounting.models import Account

    codes = {code for _, _, code, _ in iter_rule_codes()}
    errors = []
    for database in databases:
        accounts = {
            account.code: account
            for account in Account.objects.using(database).filter(code__in=codes)
        }
        for table, key, code, _ in iter_rule_codes():
            account = accounts.get(code)
            if account is None:
                errors.append(Error(
                    f"{table}[{key}] references account {code}, which does not exist in '{database}'.",
                    hint="Run manage.py setup_chart_of_accounts.",
                    id="billing.E003",
                ))
            elif not account.is_active:
                errors.append(Error(
                    f"{table}[{key}] references inactive account {code} in '{database}'.",
                    id="billing.E004",
                ))
    return errors
