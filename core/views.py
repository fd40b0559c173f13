from django.http import HttpResponse, JsonResponse

ENDPOINTS = [
    ('POST', '/api/pay', 'Policy check, authorization check, collection and vault settlement.'),
    ('GET', '/api/policy/:address', 'Limits, spend today and remaining daily allowance.'),
    ('POST', '/api/policy/:address/authorize-merchant', 'Allow a merchant address or domain.'),
    ('GET', '/api/merchants', 'Facilitator merchant whitelist.'),
    ('GET', '/api/vault/', 'Vault address, asset, treasury and protocol fee.'),
    ('GET', '/api/vault/authors/:address', 'Author tier, claimable and locked revenue.'),
]

HOME_PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8" />
<meta name="viewport" content="width=device-width, initial-scale=1" />
<title>PayPerie x402 Facilitator</title>
<style>
    body {{ font-family: system-ui, sans-serif; margin: 3rem auto; max-width: 760px; color: #1e293b; }}
    h1 {{ margin-bottom: 0.25rem; }}
    table {{ border-collapse: collapse; width: 100%; margin-top: 1.5rem; }}
    td {{ padding: 0.5rem 0.75rem; border-top: 1px solid #e2e8f0; vertical-align: top; }}
    td.method {{ font-weight: 600; color: #0f766e; }}
</style>
</head>
<body>
    <h1>PayPerie x402 Facilitator</h1>
    <p>Settles signed USDC transfer authorizations and routes author revenue through the vesting vault.</p>
    <table>{rows}</table>
</body>
</html>"""


def home(request):
    rows = ''.join(
        f'<tr><td class="method">{method}</td><td><code>{path}</code></td><td>{summary}</td></tr>'
        for method, path, summary in ENDPOINTS
    )
    return HttpResponse(HOME_PAGE_TEMPLATE.format(rows=rows), content_type="text/html; charset=utf-8")


def health(request):
    return JsonResponse({"status": "ok", "service": "x402-facilitator"})
