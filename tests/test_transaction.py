"""
Tests for transaction assembly.

Covers:
  - Fixed SignDoc byte vector for a bank send
  - Determinism and fee-coin ordering
  - proto3 default omission and varint encoding
  - Multi-message and multi-signer assembly, signer order checks
  - Coin / Fee / Msg validation
  - IBC transfer message layout
"""

import unittest

from starlane_core import proto
from starlane_core.coin import Coin, Fee, parse_coins
from starlane_core.crypto_utils import sha256, verify
from starlane_core.errors import EncodingError, MalformedPayload
from starlane_core.msg import (
    MSG_SEND_TYPE_URL,
    MSG_TRANSFER_TYPE_URL,
    Msg,
    VoteOption,
    bank_send,
    delegate,
    ibc_transfer,
    vote,
    withdraw_delegator_reward,
)
from starlane_core.transaction import (
    MAX_MEMO_CHARACTERS,
    SignerData,
    UnsignedTx,
    assemble,
    build_sign_doc,
    sign_docs,
    sign_tx,
)
from starlane_core.wallet import PrivateKey

from tests.conftest import ABANDON_ADDRESS, SECRET_ADDRESS

SECRET = PrivateKey.from_secret(b"mySecret")
OTHER = PrivateKey.from_secret(b"otherSecret")

EXPECTED_BODY = (
    "0a8c010a1c2f636f736d6f732e62616e6b2e763162657461312e4d736753656e64126c0a2d636f736d6f73"
    "316e783776717138687379386368776532376d637234636d617a64777573377a6a6c3264733070122d636f"
    "736d6f733139726c34636d32686d7238616679346b6c6470787a33666b61346a6775713061757164616c34"
    "1a0c0a057561746f6d12033130301208737461726c616e65"
)
EXPECTED_AUTH_INFO = (
    "0a500a460a1f2f636f736d6f732e63727970746f2e736563703235366b312e5075624b657912230a21029651"
    "a9aac4c22b27b3019aee6df746266e1ae746ee79772a6e5ead198ebd07c312040a0208011803121e0a0a0a05"
    "7374616b651201310a0c0a057561746f6d120335303010c09a0c"
)
EXPECTED_SIGN_DOC_SHA256 = "aba5ca96f795678e4d65c7207f0d2cbcc61a58cd5a5925222481127e840b7647"


def _reference_tx(fee_coins=(Coin(500, "uatom"), Coin(1, "stake"))):
    msg = bank_send(SECRET_ADDRESS, ABANDON_ADDRESS, [Coin(100, "uatom")])
    return UnsignedTx(
        msgs=(msg,),
        fee=Fee(fee_coins, 200_000),
        signers=(SignerData(bytes(SECRET.public_key), sequence=3, account_number=7),),
        memo="starlane",
    )


class TestSignDocVector(unittest.TestCase):

    def test_body_bytes(self):
        self.assertEqual(_reference_tx().body_bytes().hex(), EXPECTED_BODY)

    def test_auth_info_bytes(self):
        self.assertEqual(_reference_tx().auth_info_bytes().hex(), EXPECTED_AUTH_INFO)

    def test_sign_doc_bytes(self):
        doc = build_sign_doc(_reference_tx(), "cosmoshub-4", 7)
        raw = doc.to_bytes()
        self.assertEqual(len(raw), 287)
        self.assertEqual(sha256(raw).hex(), EXPECTED_SIGN_DOC_SHA256)
        self.assertTrue(raw.endswith(bytes.fromhex("1a0b636f736d6f736875622d342007")))

    def test_pure(self):
        a = build_sign_doc(_reference_tx(), "cosmoshub-4", 7).to_bytes()
        b = build_sign_doc(_reference_tx(), "cosmoshub-4", 7).to_bytes()
        self.assertEqual(a, b)

    def test_fee_coin_order_does_not_matter(self):
        swapped = _reference_tx(fee_coins=(Coin(1, "stake"), Coin(500, "uatom")))
        self.assertEqual(
            build_sign_doc(swapped, "cosmoshub-4", 7).to_bytes(),
            build_sign_doc(_reference_tx(), "cosmoshub-4", 7).to_bytes(),
        )

    def test_chain_id_and_account_number_change_bytes(self):
        base = build_sign_doc(_reference_tx(), "cosmoshub-4", 7).to_bytes()
        self.assertNotEqual(base, build_sign_doc(_reference_tx(), "theta-1", 7).to_bytes())
        self.assertNotEqual(base, build_sign_doc(_reference_tx(), "cosmoshub-4", 8).to_bytes())


class TestProto(unittest.TestCase):

    def test_varint(self):
        self.assertEqual(proto.encode_varint(0), b"\x00")
        self.assertEqual(proto.encode_varint(300), b"\xac\x02")
        self.assertEqual(proto.decode_varint(b"\xac\x02"), (300, 2))
        self.assertEqual(proto.encode_varint((1 << 64) - 1), b"\xff" * 9 + b"\x01")

    def test_varint_range(self):
        with self.assertRaises(MalformedPayload):
            proto.encode_varint(-1)
        with self.assertRaises(MalformedPayload):
            proto.encode_varint(1 << 64)

    def test_defaults_omitted(self):
        self.assertEqual(proto.uint64_field(3, 0), b"")
        self.assertEqual(proto.string_field(2, ""), b"")
        self.assertEqual(proto.message_field(2, b""), b"\x12\x00")
        self.assertEqual(proto.message_field(2, None), b"")

    def test_zero_sequence_and_account_number_omitted(self):
        info = proto.encode_signer_info(bytes(SECRET.public_key), 0)
        self.assertEqual([f for f, _, _ in proto.iter_fields(info)], [1, 2])
        doc = proto.encode_sign_doc(b"\x01", b"\x02", "c", 0)
        self.assertEqual([f for f, _, _ in proto.iter_fields(doc)], [1, 2, 3])

    def test_iter_fields_truncated(self):
        with self.assertRaises(MalformedPayload):
            list(proto.iter_fields(b"\x0a\x05ab"))


class TestAssembly(unittest.TestCase):

    def _two_signer_tx(self):
        msgs = (
            bank_send(SECRET.address(), OTHER.address(), [Coin(1, "uatom")]),
            bank_send(OTHER.address(), SECRET.address(), [Coin(2, "uatom")]),
        )
        return UnsignedTx(
            msgs=msgs,
            fee=Fee((Coin(10, "uatom"),), 300_000),
            signers=(
                SignerData(bytes(SECRET.public_key), sequence=0, account_number=5),
                SignerData(bytes(OTHER.public_key), sequence=12, account_number=9),
            ),
        )

    def test_messages_encoded_in_order(self):
        tx = self._two_signer_tx()
        anys = [v for f, _, v in proto.iter_fields(tx.body_bytes()) if f == 1]
        self.assertEqual(anys, [m.to_any() for m in tx.msgs])

    def test_one_sign_doc_per_signer(self):
        tx = self._two_signer_tx()
        docs = sign_docs(tx, "chain")
        self.assertEqual([d.account_number for d in docs], [5, 9])
        self.assertEqual(docs[0].body_bytes, docs[1].body_bytes)
        self.assertEqual(docs[0].auth_info_bytes, docs[1].auth_info_bytes)
        self.assertNotEqual(docs[0].to_bytes(), docs[1].to_bytes())

    def test_sign_tx_multi_signer(self):
        tx = self._two_signer_tx()
        signed = sign_tx(tx, "chain", [SECRET, OTHER])
        docs = sign_docs(tx, "chain")
        self.assertTrue(verify(bytes(SECRET.public_key), docs[0].to_bytes(), signed.signatures[0]))
        self.assertTrue(verify(bytes(OTHER.public_key), docs[1].to_bytes(), signed.signatures[1]))
        sigs = [v for f, _, v in proto.iter_fields(signed.to_bytes()) if f == 3]
        self.assertEqual(sigs, list(signed.signatures))

    def test_sign_tx_wrong_order(self):
        with self.assertRaises(EncodingError):
            sign_tx(self._two_signer_tx(), "chain", [OTHER, SECRET])

    def test_assemble_count_mismatch(self):
        with self.assertRaises(EncodingError):
            assemble(self._two_signer_tx(), [b"\x01" * 64])

    def test_assemble_bad_signature_size(self):
        with self.assertRaises(EncodingError):
            assemble(self._two_signer_tx(), [b"\x01" * 64, b"\x01" * 65])

    def test_tx_hash(self):
        signed = sign_tx(self._two_signer_tx(), "chain", [SECRET, OTHER])
        self.assertEqual(signed.tx_hash, sha256(signed.to_bytes()).hex().upper())
        self.assertEqual(len(signed.tx_hash), 64)


class TestUnsignedTxValidation(unittest.TestCase):

    def test_memo_limit(self):
        signer = SignerData(bytes(SECRET.public_key), 0, 0)
        msg = bank_send(SECRET_ADDRESS, ABANDON_ADDRESS, [])
        UnsignedTx((msg,), Fee(), (signer,), memo="x" * MAX_MEMO_CHARACTERS)
        with self.assertRaises(MalformedPayload):
            UnsignedTx((msg,), Fee(), (signer,), memo="x" * (MAX_MEMO_CHARACTERS + 1))

    def test_no_messages(self):
        with self.assertRaises(MalformedPayload):
            UnsignedTx((), Fee(), (SignerData(bytes(SECRET.public_key), 0, 0),))

    def test_no_signers(self):
        with self.assertRaises(MalformedPayload):
            UnsignedTx((bank_send(SECRET_ADDRESS, ABANDON_ADDRESS, []),), Fee(), ())

    def test_bad_signer_key(self):
        with self.assertRaises(MalformedPayload):
            SignerData(b"\x02" * 10, 0, 0)

    def test_lists_become_tuples(self):
        signer = SignerData(bytes(SECRET.public_key), 0, 0)
        tx = UnsignedTx([bank_send(SECRET_ADDRESS, ABANDON_ADDRESS, [])], Fee(), [signer])
        self.assertIsInstance(tx.msgs, tuple)
        self.assertIsInstance(tx.signers, tuple)


class TestCoins(unittest.TestCase):

    def test_parse(self):
        self.assertEqual(Coin.parse("100uatom"), Coin(100, "uatom"))
        self.assertEqual(
            Coin.parse("5ibc/27394FB092D2ECCD56123C74F36E4C1F926001CEADA9CA97EA622B25F41E5EB2"),
            Coin(5, "ibc/27394FB092D2ECCD56123C74F36E4C1F926001CEADA9CA97EA622B25F41E5EB2"),
        )

    def test_parse_list(self):
        self.assertEqual(parse_coins("1uatom,2stake"), (Coin(1, "uatom"), Coin(2, "stake")))
        self.assertEqual(parse_coins(""), ())

    def test_parse_rejects(self):
        for bad in ("uatom", "-1uatom", "1.5uatom", "10u"):
            with self.subTest(text=bad), self.assertRaises(MalformedPayload):
                Coin.parse(bad)

    def test_big_amounts_are_exact(self):
        big = Coin(2 ** 255, "wei")
        total = big + Coin(2 ** 255, "wei")
        self.assertEqual(total.amount, 2 ** 256)
        self.assertIn(str(2 ** 256).encode(), total.to_proto())

    def test_add_different_denoms(self):
        with self.assertRaises(MalformedPayload):
            Coin(1, "uatom") + Coin(1, "stake")

    def test_negative_amount(self):
        with self.assertRaises(MalformedPayload):
            Coin(-1, "uatom")

    def test_non_int_amount(self):
        with self.assertRaises(MalformedPayload):
            Coin(1.5, "uatom")
        with self.assertRaises(MalformedPayload):
            Coin(True, "uatom")

    def test_str(self):
        self.assertEqual(str(Coin(42, "stake")), "42stake")

    def test_fee_gas_range(self):
        with self.assertRaises(MalformedPayload):
            Fee((), -1)


class TestMsgs(unittest.TestCase):

    def test_msg_requires_slash(self):
        with self.assertRaises(MalformedPayload):
            Msg("cosmos.bank.v1beta1.MsgSend", b"")

    def test_msg_is_opaque(self):
        msg = Msg("/custom.module.v1.MsgAnything", b"\xff\x00\x01")
        self.assertEqual(
            msg.to_any(),
            proto.string_field(1, "/custom.module.v1.MsgAnything") + proto.bytes_field(2, b"\xff\x00\x01"),
        )

    def test_bank_send_fields(self):
        msg = bank_send("a", "b", [Coin(1, "uatom"), Coin(2, "stake")])
        self.assertEqual(msg.type_url, MSG_SEND_TYPE_URL)
        fields = list(proto.iter_fields(msg.value))
        self.assertEqual([f for f, _, _ in fields], [1, 2, 3, 3])

    def test_staking_and_gov_builders(self):
        self.assertTrue(delegate("d", "v", Coin(1, "uatom")).type_url.endswith("MsgDelegate"))
        self.assertTrue(withdraw_delegator_reward("d", "v").type_url.endswith("MsgWithdrawDelegatorReward"))
        value = vote(12, "voter", VoteOption.NO).value
        self.assertEqual(list(proto.iter_fields(value)), [(1, 0, 12), (2, 2, b"voter"), (3, 0, 3)])

    def test_msg_type_url_must_be_str(self):
        for bad in (None, b"/cosmos.bank.v1beta1.MsgSend", 7):
            with self.assertRaises(MalformedPayload):
                Msg(bad, b"")

    def test_ibc_transfer_bytes(self):
        msg = ibc_transfer("a", "b", Coin(1, "u"), "channel-0", timeout_timestamp=1)
        self.assertEqual(msg.type_url, MSG_TRANSFER_TYPE_URL)
        self.assertEqual(
            msg.value.hex(),
            "0a087472616e73666572"      # source_port
            "12096368616e6e656c2d30"    # source_channel
            "1a060a0175120131"          # token
            "220161"                    # sender
            "2a0162"                    # receiver
            "3200"                      # timeout_height, always present
            "3801",                     # timeout_timestamp
        )

    def test_ibc_transfer_fields(self):
        msg = ibc_transfer(ABANDON_ADDRESS, "osmo1receiver", Coin(7, "uatom"), "channel-141",
                           timeout_height=(1, 5000), memo="hi")
        fields = list(proto.iter_fields(msg.value))
        self.assertEqual([f for f, _, _ in fields], [1, 2, 3, 4, 5, 6, 8])
        values = {f: v for f, _, v in fields}
        self.assertEqual(values[3], Coin(7, "uatom").to_proto())
        self.assertEqual(values[4], ABANDON_ADDRESS.encode())
        self.assertEqual(list(proto.iter_fields(values[6])), [(1, 0, 1), (2, 0, 5000)])
        self.assertEqual(values[8], b"hi")

    def test_ibc_transfer_needs_timeout(self):
        with self.assertRaises(MalformedPayload):
            ibc_transfer("a", "b", Coin(1, "u"), "channel-0")
