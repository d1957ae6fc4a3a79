# nmanager

Building blocks for an alert notification service that sits behind
Alertmanager-style webhooks:

- **Alert models** (`nmanager.types`): `Alert`, `Alerts`, `Data`, `KV`,
  `Pair` and `Pairs`, with helpers for firing/resolved subsets, common labels
  and annotations, and sorted label pairs (`alertname` first, `rule_id`
  hidden).
- **Language packs** (`nmanager.language`): `parse_dictionary` reads YAML
  language packs into a per-language translation dictionary.
- **Templates** (`nmanager.template`): `Template` renders text and HTML
  notifications with Jinja2, translates keys, and `Template.split` cuts a
  large batch of alerts into messages that stay under a size limit.
- **Pipelines** (`nmanager.stage`, `nmanager.silence`): `Stage`,
  `MultiStage` and `SilenceStage`, which drops alerts matched by an active
  silence.
- **Buffering** (`nmanager.store`): `MemoryProvider` and `AlertStore`, a
  bounded in-memory queue with push timeouts and batched pulls.
- **Webhook receiver** (`nmanager.webhook`): `AlertHandler`, `Webhook` and
  `WebhookOptions`, a WSGI application that accepts alerts on
  `POST /api/v2/alerts`.
- **Tenant sidecars** (`nmanager.k8s_sidecar`, `nmanager.ks_sidecar`,
  `nmanager.ks_backend`): small HTTP services that tell the notification
  service which tenants should receive alerts for a namespace.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Working with alerts

```python
from nmanager.types import Data

data = Data.from_dict({
    "alerts": [
        {"status": "firing", "labels": {"alertname": "HighCPU", "namespace": "demo"},
         "annotations": {"message": "CPU usage is above 90%"}},
        {"status": "firing", "labels": {"alertname": "HighCPU", "namespace": "demo"},
         "annotations": {"summary": "CPU usage is high"}},
    ]
})

data.format()                                    # fills in common labels and annotations
print(data.status())                             # "firing"
print(data.alerts[0].message())                  # message, else summary, else summary_cn
print(data.alerts[0].labels.sorted_pairs().names())  # ['alertname', 'namespace']
```

`Alert.to_dict()` and `Data.to_dict()` give the JSON shape used on the wire
(`startsAt`, `endsAt`, `groupLabels`, `commonLabels`, ...).

## Templates

Templates are Jinja2 text. Named templates are declared with
`{{ define "name" }} ... {{ end }}` blocks and called with
`{{ template "name" . }}`. While rendering, the context holds `data`,
`alerts`, `group_labels`, `common_labels`, `common_annotations` and `status`,
and the functions `toUpper`, `toLower`, `title`, `join`, `match`, `safeHtml`,
`reReplaceAll`, `stringSlice`, `escape`, `translate` and `message`.

```python
from nmanager.template import Template

template = Template("English", [])
template.parse_text(
    '{{ define "nm.text" }}'
    '{% for a in alerts %}{{ translate(a.status) }} {{ message(a) }}\n{% endfor %}'
    '{{ end }}'
)
print(template.text("nm.text", data))   # "FIRING CPU usage is above 90%\nFIRING CPU usage is high"
slices = template.split(data, 4096, "nm.text", "")
```

`Template.html` renders the same way with HTML escaping. Trailing spaces and
line breaks are stripped from every result. Language packs are YAML lists of
`{name: ..., dictionary: {...}}`; with the language `zh-cn`, `message`
prefers the `summary_cn` annotation.

## Buffering alerts

```python
from nmanager.store import MemoryProvider
from nmanager.types import Alert

provider = MemoryProvider(queue_len=10000, push_timeout=3.0)
provider.push(Alert(status="firing", labels={"alertname": "HighCPU"}))
batch = provider.pull(batch_size=100, batch_wait=1.0)
provider.close()
```

Pushing into a full queue raises `PushTimeoutError` once the timeout has
passed. Pushing into a closed store raises `StoreClosedError`, and so does
pulling once a closed store is empty; the error's `alerts` attribute carries
the alerts pulled before that. `AlertStore("memory")` wraps a
`MemoryProvider`; it also accepts any `Provider` instance.

## Webhook receiver

```python
import threading
from nmanager.store import AlertStore
from nmanager.webhook import AlertHandler, Webhook, WebhookOptions

store = AlertStore("memory")
webhook = Webhook(AlertHandler(store, cluster="host"), WebhookOptions(listen_address=":19093"))
stop = threading.Event()
webhook.run(stop)   # blocks until stop is set
```

Each accepted alert gets a `cluster` label if it has none, an `alerttime`
annotation when its `alerttype` label is `metric`, and an `id` hashed from
its content, and is then pushed to the store. `GET` on `/metrics`,
`/-/reload`, `/-/ready`, `/-/live` and `/status` answers with a small JSON
status message. `Webhook.wsgi_app` can also be mounted in any WSGI server.

## Tenant sidecars

Two commands are installed; both listen on port 19094.

`nmanager-k8s-sidecar` serves `GET /api/v2/tenant?namespace=<ns>` and answers
with the namespace itself as the only tenant; a request without a namespace
gets a 400 response. Its probes are `/api/v2/readiness`, `/api/v2/liveness`
and `/api/v2/preStop`.

```
nmanager-k8s-sidecar
```

`nmanager-ks-sidecar` periodically asks a KubeSphere API server which users
may receive notifications in each namespace of each cluster (via
`nmanager.ks_backend.Backend`), and serves
`GET /api/v2/tenant?cluster=<cluster>&namespace=<ns>`. Unknown clusters or
namespaces get a 404 response. Its probes are `/readiness`, `/liveness` and
`/preStop`. Options: `--host`, `--username`, `--password`, `--interval`
(durations such as `5m` or `1h30m`) and `--batchSize`. Without a username and
password it authenticates with the service-account token file.

```
nmanager-ks-sidecar --help
```

## What is not included

The package receives, models, templates, silences and buffers alerts, but it
does not deliver them: there are no senders for e-mail, chat or SMS, no
receiver and configuration management, and no aggregation or notify stages.
`SilenceStage` takes a callable that supplies the active silences rather
than reading them from a cluster. There is no command that starts the
webhook receiver; run it from Python as shown above.