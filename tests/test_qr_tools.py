import asyncio
import base64
import threading

import pytest

from errors import (
    BusyError,
    DeliveryError,
    EmptySelectionError,
    ExportError,
    GenerationError,
    NoDeliverableRecipientsError,
)
from models import DistributionResult, ProgressState, Registration
from qr_tools import QrTools

PNG_B64 = base64.b64encode(b"\x89PNG fake image").decode("ascii")


def _reg(i, email="", code=None):
    return Registration(
        id=f"id-{i}",
        surname=f"Ama{i}",
        middle_name="",
        last_name="Mensah",
        email=email,
        camper_code=code,
    )


class _FakeEncoder:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def encode(self, registration):
        self.calls.append(registration.id)
        if self.fail:
            raise RuntimeError("encoder down")
        return f"data:image/png;base64,{PNG_B64}"


class _FakeRenderer:
    def __init__(self, fail_ids=()):
        self.fail_ids = set(fail_ids)
        self.calls = []

    def render(self, registration):
        self.calls.append(registration.id)
        if registration.id in self.fail_ids:
            raise RuntimeError("Could not create canvas context")
        return f"data:image/png;base64,{PNG_B64}"


class _FakeAssembler:
    def __init__(self, fail=False, gate=None):
        self.fail = fail
        self.gate = gate
        self.entered = threading.Event()
        self.received = None

    def estimate_pages(self, count):
        return (count + 15) // 16

    def assemble(self, registrations):
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        self.received = [r.id for r in registrations]
        if self.fail:
            raise RuntimeError("disk full")
        return "camper-qr-cards.pdf"


class _FakeTransport:
    def __init__(self, fail_to=(), message="Failed to send email"):
        self.fail_to = set(fail_to)
        self.message = message
        self.sent = []
        self._lock = threading.Lock()

    def send(self, message):
        with self._lock:
            self.sent.append(message)
        if message.to in self.fail_to:
            raise DeliveryError(self.message)
        return {"success": True}


def _tools(renderer=None, transport=None, assembler=None, encoder=None, **kw):
    kw.setdefault("success_reset_delay_s", 0.01)
    kw.setdefault("failure_reset_delay_s", 0.02)
    return QrTools(
        encoder or _FakeEncoder(),
        renderer or _FakeRenderer(),
        assembler or _FakeAssembler(),
        transport or _FakeTransport(),
        **kw,
    )


# Distribution


def test_send_emails_all_succeed():
    transport = _FakeTransport()
    tools = _tools(transport=transport)
    regs = [_reg(i, f"c{i}@example.com") for i in range(3)]

    result = asyncio.run(tools.send_emails(regs))

    assert result == DistributionResult(success=3, failed=0, errors=[])
    assert [m.to for m in transport.sent] == ["c0@example.com", "c1@example.com", "c2@example.com"]


def test_send_emails_builds_message_from_registration():
    transport = _FakeTransport()
    tools = _tools(transport=transport)
    reg = Registration(id="r1", surname="Kofi", middle_name="K", last_name="Boateng", email=" kofi@example.com ")

    asyncio.run(tools.send_emails([reg]))

    msg = transport.sent[0]
    assert msg.to == "kofi@example.com"
    assert msg.subject == "Your Camper QR Code"
    assert msg.name == "Kofi K Boateng"
    assert msg.camper_code == "r1"
    assert msg.payload == PNG_B64
    assert msg.to_payload()["qrBase64"] == PNG_B64


def test_send_emails_skips_registrations_without_email(capsys):
    transport = _FakeTransport()
    renderer = _FakeRenderer()
    tools = _tools(renderer=renderer, transport=transport)
    regs = [_reg(0, "a@example.com"), _reg(1, ""), _reg(2, None), _reg(3, "   ")]

    result = asyncio.run(tools.send_emails(regs))

    assert result.success == 1 and result.failed == 0
    assert len(transport.sent) == 1
    assert renderer.calls == ["id-0"]
    assert "Skipping 3 registration(s) without email addresses" in capsys.readouterr().out


def test_send_emails_transport_failure_does_not_abort_batch():
    transport = _FakeTransport(fail_to={"c1@example.com"}, message="Mailbox unavailable")
    renderer = _FakeRenderer()
    tools = _tools(renderer=renderer, transport=transport)
    regs = [_reg(i, f"c{i}@example.com") for i in range(3)]

    result = asyncio.run(tools.send_emails(regs))

    assert result.success == 2
    assert result.failed == 1
    assert result.errors == ("Ama1 Mensah: Mailbox unavailable",)
    assert renderer.calls == ["id-0", "id-1", "id-2"]
    assert [m.to for m in transport.sent][-1] == "c2@example.com"


def test_send_emails_render_failure_is_isolated():
    transport = _FakeTransport()
    tools = _tools(renderer=_FakeRenderer(fail_ids={"id-0"}), transport=transport)
    regs = [_reg(i, f"c{i}@example.com") for i in range(4)]

    result = asyncio.run(tools.send_emails(regs))

    assert result.failed == 1
    assert result.success == 3
    assert result.errors == ("Ama0 Mensah: Could not create canvas context",)
    assert len(transport.sent) == 3


def test_send_emails_errors_follow_input_order():
    transport = _FakeTransport(fail_to={"c4@example.com"})
    tools = _tools(renderer=_FakeRenderer(fail_ids={"id-1"}), transport=transport)
    regs = [_reg(i, f"c{i}@example.com" if i != 2 else "") for i in range(6)]

    result = asyncio.run(tools.send_emails(regs))

    assert [e.split(":")[0] for e in result.errors] == ["Ama1 Mensah", "Ama4 Mensah"]
    assert result.success + result.failed == 5


def test_send_emails_concurrent_keeps_order_and_counts():
    transport = _FakeTransport(fail_to={f"c{i}@example.com" for i in (7, 2, 5)})
    tools = _tools(transport=transport, concurrency=4)
    regs = [_reg(i, f"c{i}@example.com") for i in range(10)]

    result = asyncio.run(tools.send_emails(regs))

    assert result.success == 7
    assert result.failed == 3
    assert [e.split(":")[0] for e in result.errors] == ["Ama2 Mensah", "Ama5 Mensah", "Ama7 Mensah"]
    assert len(transport.sent) == 10


def test_send_emails_empty_selection_fails_fast():
    transport = _FakeTransport()
    tools = _tools(transport=transport)

    with pytest.raises(EmptySelectionError):
        asyncio.run(tools.send_emails([]))
    assert transport.sent == []


def test_send_emails_no_deliverable_recipients():
    transport = _FakeTransport()
    renderer = _FakeRenderer()
    tools = _tools(renderer=renderer, transport=transport)

    with pytest.raises(NoDeliverableRecipientsError):
        asyncio.run(tools.send_emails([_reg(0, ""), _reg(1, None)]))
    assert transport.sent == []
    assert renderer.calls == []


def test_send_emails_uses_camper_code_when_present():
    transport = _FakeTransport()
    tools = _tools(transport=transport)

    asyncio.run(tools.send_emails([_reg(0, "a@example.com", code="NBC-001")]))

    assert transport.sent[0].camper_code == "NBC-001"


# PDF export


def test_export_pdf_progress_transitions_and_reset():
    assembler = _FakeAssembler()
    tools = _tools(assembler=assembler)
    seen = []
    tools.progress.subscribe(seen.append)
    regs = [_reg(i) for i in range(17)]

    async def _run():
        result = await tools.export_pdf(regs)
        after_export = tools.progress.state
        await asyncio.sleep(0.05)
        return result, after_export

    result, after_export = asyncio.run(_run())

    assert result == "camper-qr-cards.pdf"
    assert assembler.received == [f"id-{i}" for i in range(17)]
    assert after_export == ProgressState(active=True, message="PDF generated successfully!")
    assert [s.message for s in seen] == [
        "Preparing PDF generation...",
        "Generating 17 QR codes (2 pages)...",
        "PDF generated successfully!",
        "",
    ]
    assert tools.progress.state == ProgressState()


def test_export_pdf_single_page_label():
    tools = _tools()
    seen = []
    tools.progress.subscribe(lambda s: seen.append(s.message))

    asyncio.run(tools.export_pdf([_reg(0)]))

    assert "Generating 1 QR codes (1 page)..." in seen


def test_export_pdf_failure_updates_progress_then_raises():
    tools = _tools(assembler=_FakeAssembler(fail=True), failure_reset_delay_s=0.2)

    async def _run():
        with pytest.raises(ExportError) as exc:
            await tools.export_pdf([_reg(0)])
        state = tools.progress.state
        await asyncio.sleep(0.01)
        mid = tools.progress.state
        await asyncio.sleep(0.4)
        return exc.value, state, mid

    err, state, mid = asyncio.run(_run())

    assert "disk full" in str(err)
    assert isinstance(err.__cause__, RuntimeError)
    assert state == ProgressState(active=True, message="PDF generation failed")
    assert mid.active
    assert tools.progress.state == ProgressState()


def test_export_pdf_empty_selection_leaves_progress_idle():
    tools = _tools()
    seen = []
    tools.progress.subscribe(seen.append)

    with pytest.raises(EmptySelectionError):
        asyncio.run(tools.export_pdf([]))

    assert tools.progress.state == ProgressState(active=False, message="")
    assert seen == []


async def _wait_until_assembling(assembler):
    while not assembler.entered.is_set():
        await asyncio.sleep(0.005)


def test_export_pdf_rejects_concurrent_export():
    gate = threading.Event()
    assembler = _FakeAssembler(gate=gate)
    tools = _tools(assembler=assembler)

    async def _run():
        first = asyncio.create_task(tools.export_pdf([_reg(0)]))
        await _wait_until_assembling(assembler)
        with pytest.raises(BusyError):
            await tools.export_pdf([_reg(1)])
        busy_state = tools.progress.state
        gate.set()
        return await first, busy_state

    result, busy_state = asyncio.run(_run())

    assert result == "camper-qr-cards.pdf"
    assert assembler.received == ["id-0"]
    assert busy_state.message == "Generating 1 QR codes (1 page)..."


def test_new_export_cancels_pending_reset():
    assembler = _FakeAssembler()
    tools = _tools(assembler=assembler, success_reset_delay_s=0.1)

    async def _run():
        await tools.export_pdf([_reg(0)])
        assembler.gate = threading.Event()
        assembler.entered = threading.Event()
        second = asyncio.create_task(tools.export_pdf([_reg(1)]))
        await _wait_until_assembling(assembler)
        await asyncio.sleep(0.15)
        during = tools.progress.state
        assembler.gate.set()
        await second
        return during

    during = asyncio.run(_run())

    assert during == ProgressState(active=True, message="Generating 1 QR codes (1 page)...")


def test_unsubscribe_stops_notifications():
    tools = _tools()
    seen = []
    unsubscribe = tools.progress.subscribe(seen.append)
    unsubscribe()

    asyncio.run(tools.export_pdf([_reg(0)]))

    assert seen == []


# Single registration


def test_retrieve_token_returns_encoder_output():
    tools = _tools()
    assert asyncio.run(tools.retrieve_token(_reg(0))).startswith("data:image/png;base64,")


def test_retrieve_token_wraps_encoder_failure():
    tools = _tools(encoder=_FakeEncoder(fail=True))
    with pytest.raises(GenerationError):
        asyncio.run(tools.retrieve_token(_reg(0)))


def test_save_token_writes_png_named_by_code(tmp_path):
    tools = _tools()

    path = asyncio.run(tools.save_token(_reg(0, code="NBC001"), tmp_path))

    assert path == tmp_path / "qr_NBC001.png"
    assert path.read_bytes() == b"\x89PNG fake image"
    assert [p.name for p in tmp_path.iterdir()] == ["qr_NBC001.png"]


def test_save_token_falls_back_to_id(tmp_path):
    tools = _tools()
    path = asyncio.run(tools.save_token(_reg(3), tmp_path))
    assert path.name == "qr_id-3.png"


def test_save_token_failure_leaves_no_files(tmp_path):
    tools = _tools(encoder=_FakeEncoder(fail=True))
    with pytest.raises(GenerationError):
        asyncio.run(tools.save_token(_reg(0), tmp_path))
    assert list(tmp_path.iterdir()) == []


def test_save_token_keeps_distinct_codes_apart(tmp_path):
    tools = _tools()

    dotted = asyncio.run(tools.save_token(_reg(1, code="NBC.001"), tmp_path))
    slashed = asyncio.run(tools.save_token(_reg(2, code="NBC/001"), tmp_path))
    accented = asyncio.run(tools.save_token(_reg(9, code="ÉÉ"), tmp_path))

    assert dotted.name == "qr_NBC.001.png"
    assert slashed.name == "qr_NBC_001.png"
    assert accented.name == "qr_ÉÉ.png"
    assert len(list(tmp_path.iterdir())) == 3


def test_save_token_unusable_code_falls_back_to_id(tmp_path):
    tools = _tools()
    path = asyncio.run(tools.save_token(_reg(9, code=".."), tmp_path))
    assert path.name == "qr_id-9.png"


def test_save_token_removes_temp_file_when_move_fails(tmp_path, monkeypatch):
    tools = _tools()

    def _fail_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("qr_tools.os.replace", _fail_replace)

    with pytest.raises(OSError, match="disk full"):
        asyncio.run(tools.save_token(_reg(0, code="NBC001"), tmp_path))
    assert list(tmp_path.glob(".qr_*.tmp")) == []
    assert list(tmp_path.iterdir()) == []
