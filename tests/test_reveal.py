"""Tests for the decryption request / oracle callback flow."""
import asyncio
import functools

import pytest

from umbra.client.archetypes import ArchetypeClient
from umbra.server.compute import ClusteringEngine
from umbra.server.events import ClusterDecrypted, DecryptionRequested
from umbra.server.oracle import LocalDecryptionOracle
from umbra.shared.config import EngineSettings
from umbra.shared.errors import (
    InvalidReference,
    MalformedCleartext,
    ProofVerificationFailure,
    Unauthorized,
)
from umbra.shared.proofs import KmsSigner
from umbra.shared.protocol import CipherType, RequestStatus
from umbra.shared.utils import decode_words, encode_words


@pytest.fixture
def engine(make_engine, encrypt):
    """Two archetypes; cluster 0 holds two transactions, cluster 1 is empty."""
    engine = make_engine([(0, 0, 0), (100, 100, 100)])
    engine.ingest(encrypt((10, 20, 30)))
    engine.ingest(encrypt((12, 22, 32)))
    return engine


def decrypted_events(engine):
    return engine.events.since(0, ClusterDecrypted)


class TestRequest:

    def test_request_is_pending(self, engine):
        request_id = engine.request_decryption(0)

        assert request_id == 1
        assert engine.decryption_status(request_id) is RequestStatus.PENDING
        assert engine.pending_decryptions() == [1]
        requested = engine.events.since(0, DecryptionRequested)
        assert [(e.request_id, e.cluster_id) for e in requested] == [(1, 0)]

    def test_unknown_cluster(self, engine):
        with pytest.raises(InvalidReference):
            engine.request_decryption(7)
        assert engine.events.since(0, DecryptionRequested) == []
        assert engine.oracle.pending == []

    def test_allowlist(self, make_engine):
        engine = make_engine([(0, 0, 0)], reveal_allowlist=["auditor"])

        with pytest.raises(Unauthorized):
            engine.request_decryption(0)
        with pytest.raises(Unauthorized):
            engine.request_decryption(0, requester="analyst")

        request_id = engine.request_decryption(0, requester="auditor")
        assert engine.coordinator.get(request_id).requester == "auditor"

    def test_private_state_not_publicly_decryptable(self, runtime, engine):
        cluster = engine.get_cluster(0)
        with pytest.raises(Unauthorized):
            runtime.public_decrypt(cluster.handles())


    def test_reissued_request_id_exposes_nothing(self, runtime, encrypt):
        class ReissuingOracle(LocalDecryptionOracle):
            def submit(self, handles):
                super().submit(handles)
                return 1

        engine = ClusteringEngine.with_seeds(
            runtime, [(0, 0, 0), (100, 100, 100)],
            settings=EngineSettings(cipher_bits=32),
            oracle=ReissuingOracle(runtime),
        )
        assert engine.request_decryption(0) == 1
        engine.ingest(encrypt((7, 7, 7)))
        fresh = engine.get_cluster(0).handles()

        with pytest.raises(InvalidReference):
            engine.request_decryption(0)

        with pytest.raises(Unauthorized):
            runtime.public_decrypt(fresh)
        with pytest.raises(Unauthorized):
            engine.oracle.deliver(2)
        assert len(engine.events.since(0, DecryptionRequested)) == 1
        assert engine.oracle.deliver(1).member_count == 0


class TestCallback:

    def test_valid_callback(self, engine):
        request_id = engine.request_decryption(0)

        reveal = engine.oracle.deliver(request_id)

        assert (reveal.centroid_amount, reveal.centroid_frequency, reveal.centroid_risk) == (11, 21, 31)
        assert reveal.member_count == 2
        assert reveal.cluster_id == 0
        assert engine.decryption_status(request_id) is RequestStatus.FULFILLED
        assert engine.pending_decryptions() == []
        assert len(decrypted_events(engine)) == 1

    def test_empty_cluster_reveal(self, engine):
        request_id = engine.request_decryption(1)
        reveal = engine.oracle.deliver(request_id)
        assert (reveal.centroid_amount, reveal.member_count) == (100, 0)

    def test_second_callback_rejected(self, engine):
        request_id = engine.request_decryption(0)
        cleartext, proof = engine.oracle.fulfill(request_id)
        engine.on_decrypted(request_id, cleartext, proof)

        with pytest.raises(InvalidReference):
            engine.on_decrypted(request_id, cleartext, proof)
        assert len(decrypted_events(engine)) == 1

    def test_tampered_proof_keeps_request_pending(self, engine):
        request_id = engine.request_decryption(0)
        cleartext, proof = engine.oracle.fulfill(request_id)
        forged = bytes([proof[0] ^ 0x01]) + proof[1:]

        with pytest.raises(ProofVerificationFailure):
            engine.on_decrypted(request_id, cleartext, forged)

        assert engine.decryption_status(request_id) is RequestStatus.PENDING
        assert decrypted_events(engine) == []

        # A later honest delivery still goes through.
        engine.oracle.deliver(request_id)
        assert engine.decryption_status(request_id) is RequestStatus.FULFILLED

    def test_tampered_cleartext_rejected(self, engine):
        request_id = engine.request_decryption(0)
        cleartext, proof = engine.oracle.fulfill(request_id)
        amount, frequency, risk, count = decode_words(cleartext, 4)
        altered = encode_words([amount, frequency, risk, count + 1])

        with pytest.raises(ProofVerificationFailure):
            engine.on_decrypted(request_id, altered, proof)
        assert engine.decryption_status(request_id) is RequestStatus.PENDING

    def test_proof_bound_to_request_id(self, engine):
        first = engine.request_decryption(0)
        second = engine.request_decryption(0)
        cleartext, proof = engine.oracle.fulfill(first)

        with pytest.raises(ProofVerificationFailure):
            engine.on_decrypted(second, cleartext, proof)
        assert engine.pending_decryptions() == [first, second]

    def test_foreign_signer_rejected(self, engine):
        request_id = engine.request_decryption(0)
        cleartext, _ = engine.oracle.fulfill(request_id)
        proof = KmsSigner.from_secret(b"someone else").sign(request_id, cleartext)

        with pytest.raises(ProofVerificationFailure):
            engine.on_decrypted(request_id, cleartext, proof)

    def test_malformed_cleartext(self, engine):
        request_id = engine.request_decryption(0)
        cleartext = b"\x00" * 40
        proof = engine.oracle.signer.sign(request_id, cleartext)

        with pytest.raises(MalformedCleartext):
            engine.on_decrypted(request_id, cleartext, proof)
        assert engine.decryption_status(request_id) is RequestStatus.PENDING

    def test_unknown_request(self, engine):
        with pytest.raises(InvalidReference):
            engine.on_decrypted(42, encode_words([0, 0, 0, 0]), b"\x00" * 64)

    def test_failed_delivery_stays_queued(self, engine, monkeypatch):
        request_id = engine.request_decryption(0)
        monkeypatch.setattr(engine.oracle.signer, "sign", lambda rid, ct: b"\x00" * 64)

        with pytest.raises(ProofVerificationFailure):
            engine.oracle.deliver(request_id)
        assert engine.oracle.pending == [request_id]


class TestRevealSemantics:

    def test_reveal_reflects_request_time_snapshot(self, engine, encrypt):
        request_id = engine.request_decryption(0)
        engine.ingest(encrypt((14, 24, 34)))

        reveal = engine.oracle.deliver(request_id)

        assert reveal.member_count == 2
        assert reveal.centroid_amount == 11

    def test_concurrent_requests_same_cluster(self, engine):
        first = engine.request_decryption(0)
        second = engine.request_decryption(0)
        assert first != second

        reveals = engine.oracle.deliver_all()

        assert [r.request_id for r in reveals] == [first, second]
        assert reveals[0].member_count == reveals[1].member_count == 2
        assert len(decrypted_events(engine)) == 2

    def test_subscribers_notified(self, engine):
        seen = []
        unsubscribe = engine.events.subscribe(seen.append)

        engine.oracle.deliver(engine.request_decryption(1))
        unsubscribe()
        engine.oracle.deliver(engine.request_decryption(0))

        assert [e.name for e in seen] == ["DecryptionRequested", "ClusterDecrypted"]

    def test_delayed_delivery(self, engine):
        request_id = engine.request_decryption(0)
        reveal = asyncio.run(engine.oracle.deliver_later(request_id, delay=0.01))
        assert reveal.request_id == request_id
        assert engine.decryption_status(request_id) is RequestStatus.FULFILLED


class TestArchetypeClient:

    def test_submit_and_reveal(self, runtime, encryptor, make_engine):
        engine = make_engine([(0, 0, 0), (1000, 1000, 1000)])
        client = ArchetypeClient(
            encryptor,
            functools.partial(runtime.register_input, ctype=CipherType.EUINT32),
        )

        transaction_id, timing = client.submit((990, 1010, 1000), engine.ingest)
        assert transaction_id == 1
        assert timing["total_ms"] >= timing["ingest_ms"]

        cluster_id = client.seed_archetype((500, 500, 500), engine.add_cluster, label="mid")
        assert cluster_id == 2

        reveal, timing = client.reveal(1, engine.request_decryption, engine.oracle.deliver, engine.events)
        assert (reveal.centroid_amount, reveal.centroid_frequency, reveal.centroid_risk) == (990, 1010, 1000)
        assert reveal.member_count == 1
        assert "reveal_ms" in timing

    def test_reveal_without_delivery(self, runtime, encryptor, make_engine):
        engine = make_engine([(0, 0, 0)])
        client = ArchetypeClient(encryptor, runtime.register_input)

        with pytest.raises(RuntimeError, match="No decrypted aggregate"):
            client.reveal(0, engine.request_decryption, lambda rid: None, engine.events)
