"""
Brief: Tests for resolvelab.packets dnslib message summaries.

Inputs:
  - None

Outputs:
  - None
"""

from resolvelab.models import Record
from resolvelab.packets import query_packet, referral_packet, response_packet


def test_query_packet_flags_and_size():
    """
    Brief: Query summaries carry id, RD flag, the question and encoded size.

    Inputs:
      - None

    Outputs:
      - None
    """
    p = query_packet("example.com", "A", packet_id=1234, recursion_desired=True)
    assert p["id"] == 1234
    assert p["type"] == "query"
    assert p["flags"]["qr"] == 0
    assert p["flags"]["rd"] == 1
    assert p["questions"] == [{"name": "example.com", "type": "A", "class": "IN"}]
    assert p["answers"] == []
    # 12-byte header + 13-byte name + type/class
    assert p["size"] == 29

    iterative = query_packet("example.com", "MX", packet_id=1, recursion_desired=False)
    assert iterative["flags"]["rd"] == 0
    assert iterative["questions"][0]["type"] == "MX"


def test_response_packet_encodes_answers():
    """
    Brief: Answer records are encoded with the requested TTL and AA flag.

    Inputs:
      - None

    Outputs:
      - None
    """
    records = [
        Record("A", {"address": "93.184.216.34"}),
        Record("A", {"address": "93.184.216.35"}),
    ]
    p = response_packet(
        "example.com",
        "A",
        records,
        packet_id=7,
        ttl=300,
        authoritative=True,
        recursion_available=False,
    )
    assert p["type"] == "response"
    assert p["flags"]["aa"] == 1
    assert p["flags"]["ra"] == 0
    assert p["flags"]["rcode"] == "NOERROR"
    assert [a["data"] for a in p["answers"]] == ["93.184.216.34", "93.184.216.35"]
    assert all(a["ttl"] == 300 for a in p["answers"])


def test_response_packet_skips_simulated_records():
    """
    Brief: Simulated fallback records are never encoded; rcode is carried.

    Inputs:
      - None

    Outputs:
      - None
    """
    p = response_packet(
        "nowhere.example",
        "A",
        [Record.simulated_fallback("A")],
        packet_id=9,
        ttl=300,
        authoritative=True,
        recursion_available=False,
        rcode="NXDOMAIN",
    )
    assert p["answers"] == []
    assert p["flags"]["rcode"] == "NXDOMAIN"


def test_response_packet_mx():
    """
    Brief: MX records carry preference and exchange.

    Inputs:
      - None

    Outputs:
      - None
    """
    p = response_packet(
        "example.com",
        "MX",
        [Record("MX", {"priority": 10, "exchange": "mail.example.com"})],
        packet_id=3,
        ttl=60,
        authoritative=False,
        recursion_available=True,
    )
    assert p["flags"]["ra"] == 1
    assert p["answers"][0]["type"] == "MX"
    assert "mail.example.com" in p["answers"][0]["data"]


def test_referral_packet_authority_and_glue():
    """
    Brief: Referrals have no answers, NS authority records and A glue.

    Inputs:
      - None

    Outputs:
      - None
    """
    p = referral_packet(
        "com",
        ["a.com-servers.net", "b.com-servers.net"],
        {"a.com-servers.net": "192.0.2.10", "b.com-servers.net": "bogus"},
        domain="www.example.com",
        record_type="A",
        packet_id=11,
    )
    assert p["answers"] == []
    assert p["flags"]["aa"] == 0
    assert [a["data"] for a in p["authority"]] == [
        "a.com-servers.net.",
        "b.com-servers.net.",
    ]
    assert p["additional"] == [
        {"name": "a.com-servers.net", "type": "A", "data": "192.0.2.10"}
    ]
