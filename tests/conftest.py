"""Shared fixtures: in-memory repository, sample feeds, fake clocks and timers."""

from datetime import datetime, timedelta, timezone

import pytest

from intel_triage.models import Source
from intel_triage.storage import SqlRepository


RSS_TWO_ITEMS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
     xmlns:content="http://purl.org/rss/1.0/modules/content/"
     xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel>
    <title>Example Feed</title>
    <link>https://feed.example/</link>
    <description>Regional security news</description>
    <lastBuildDate>Mon, 01 Jan 2024 13:00:00 GMT</lastBuildDate>
    <item>
      <title>Pipeline sabotage reported</title>
      <link>https://feed.example/1</link>
      <description>Short teaser</description>
      <content:encoded><![CDATA[<p>Full report of an <b>industrial</b> attack on a facility.</p>]]></content:encoded>
      <guid>guid-1</guid>
      <category>Security</category>
      <dc:creator>Jane Analyst</dc:creator>
      <pubDate>Mon, 01 Jan 2024 12:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Frontline update</title>
      <link>https://feed.example/2</link>
      <description>Military movements near Kharkiv</description>
      <guid>guid-2</guid>
    </item>
    <item>
      <link>https://feed.example/empty</link>
    </item>
  </channel>
</rss>
"""

RSS_THREE_ITEMS = RSS_TWO_ITEMS.replace(
    "  </channel>",
    """    <item>
      <title>Insider leak investigated</title>
      <link>https://feed.example/3</link>
      <description>An employee with clearance leaked credentials</description>
      <guid>guid-3</guid>
    </item>
  </channel>""",
)

ATOM_FEED = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Example</title>
  <subtitle>Infrastructure watch</subtitle>
  <link href="https://atom.example/"/>
  <updated>2024-01-02T00:00:00Z</updated>
  <id>urn:uuid:feed</id>
  <entry>
    <title>Grid outage</title>
    <id>urn:uuid:entry-1</id>
    <link href="https://atom.example/1"/>
    <updated>2024-01-02T10:00:00Z</updated>
    <summary>Short summary</summary>
    <content type="html">&lt;p&gt;Full outage report&lt;/p&gt;</content>
    <author><name>Bob</name></author>
    <category term="infra"/>
  </entry>
</feed>
"""


class FakeClock:
    """Controllable UTC clock for queue backoff tests."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class FakeTimer:
    """Stand-in for threading.Timer that only fires when told to."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.fired = True
        return self.function(*self.args, **self.kwargs)


class TimerRecorder:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = FakeTimer(interval, function, args, kwargs)
        self.timers.append(timer)
        return timer

    @property
    def live(self):
        return [t for t in self.timers if not (t.cancelled or t.fired)]


@pytest.fixture
def repo():
    repository = SqlRepository("sqlite://")
    repository.create_tables()
    return repository


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers():
    return TimerRecorder()


@pytest.fixture
def feed_source(repo):
    return repo.save_source(Source(name="Example", url="https://feed.example/rss", refresh_interval=3600))
