# payjoin

Building blocks for Payjoin receivers and clients: Bitcoin transaction and
PSBT (version 0) encoding and validation, the receiver's optional query
parameters and JSON error replies, PSBT merging for multiparty sessions, and
Oblivious HTTP key configurations, including fetching them from a payjoin
directory.

## Installation

```
pip install payjoin
```

For running the test suite:

```
pip install "payjoin[test]"
pytest
```

## Modules

- `payjoin.urls`: `into_url` parses a URL and accepts it only if it has a
  host; `file:` and `blob:` URLs raise `BadSchemeError`, unparseable ones
  raise `UrlError`. `join_url` resolves a path against such a URL.
- `payjoin.output_substitution`: the `OutputSubstitution` enum
  (`ENABLED`, `DISABLED`); `combine` is enabled only if both flags are.
- `payjoin.primitives`: `FeeRate` (sat per 1000 weight units, with
  `from_sat_per_vb`, `BROADCAST_MIN` and `ZERO`), `OutPoint`, `TxIn`, `TxOut`,
  `Transaction` (`serialize`, `from_bytes`, `compute_txid`), `AddressType`,
  `address_type`, `is_p2wpkh`, `redeem_script_from_script_sig` and
  `InputWeightPrediction`.
- `payjoin.params`: `Params.from_query_pairs` parses the sender's optional
  parameters `v`, `minfeerate`, `disableoutputsubstitution`,
  `maxadditionalfeecontribution`, `additionalfeeoutputindex` and
  `optimisticmerge`. An unsupported version raises `UnknownVersionError`, an
  unparseable fee rate raises `FeeRateParseError`; malformed fee contribution
  values are logged and ignored, as is a lone fee contribution parameter.
- `payjoin.psbt`: `Psbt` with `from_unsigned_tx`, `from_base64`, `to_base64`,
  `validate` (input and output counts match the unsigned transaction) and
  `validate_input_utxos`. `Psbt.input_pairs()` yields `InputPairView`s with
  `previous_txout`, `validate_utxo`, `address_type` and
  `expected_input_weight`.
- `payjoin.merge`: `merge_unsigned_tx` merges the inputs and outputs of two
  distinct unsigned PSBTs, collapsing adjacent inputs that spend the same
  outpoint and keeping witness UTXOs by position.
- `payjoin.errors`: `ErrorCode`, `JsonReply`, `ReplyableError`,
  `ReceiveError`, `ImplementationError`, `PayloadError` with
  `PayloadErrorKind`, `OutputSubstitutionError`, `SelectionError`,
  `InputContributionError`, `MultipartyError`, and `json_reply_from`, which
  builds the JSON reply for a replyable error while hiding implementation
  details.
- `payjoin.receive`: `InputPair` for contributing receiver inputs
  (`from_parts` validates; `new_p2wpkh` and `new_p2tr` build from a witness
  UTXO) and `parse_payload` for checking an incoming original PSBT and its
  query string, raising `PayloadError`.
- `payjoin.ohttp`: `KeyConfig` (`generate`, `decode`, `encode`) and
  `OhttpKeys`, whose `str()` is the compact upper-case `OH1...` bech32 form
  read back by `OhttpKeys.from_str`. `bech32_encode_nochecksum` and
  `bech32_decode_nochecksum` handle that encoding.
- `payjoin.io`: `fetch_ohttp_keys` fetches a directory's keys from
  `/.well-known/ohttp-gateway` through a relay used as an HTTP proxy;
  `parse_ohttp_keys_response` checks the status and decodes the body.

## Examples

Parsing sender parameters:

```python
from payjoin.params import Params
from payjoin.output_substitution import OutputSubstitution

params = Params.from_query_pairs(
    [("v", "1"), ("disableoutputsubstitution", "true")],
    supported_versions=(1,),
)
assert params.output_substitution is OutputSubstitution.DISABLED
```

Contributing a receiver input:

```python
from payjoin.primitives import OutPoint, TxOut
from payjoin.receive import InputPair

utxo = TxOut(1000, b"\x00\x14" + b"\x11" * 20)
pair = InputPair.new_p2wpkh(utxo, OutPoint("00" * 32, 0))
assert pair.previous_txout() == utxo
```

Building an error reply:

```python
from payjoin.errors import PayloadError, PayloadErrorKind, json_reply_from

reply = json_reply_from(PayloadError(PayloadErrorKind.MISSING_PAYMENT))
assert reply.to_json() == {
    "errorCode": "original-psbt-rejected",
    "message": "Missing payment.",
}
```

OHTTP keys in compact form:

```python
from payjoin.ohttp import KeyConfig, OhttpKeys

keys = OhttpKeys(KeyConfig.generate(1))
text = str(keys)  # "OH1..."
assert OhttpKeys.from_str(text) == keys
```

Fetching OHTTP keys from a directory:

```python
import asyncio
from payjoin.io import fetch_ohttp_keys

keys = asyncio.run(
    fetch_ohttp_keys("https://relay.example.com", "https://directory.example.com")
)
print(keys)
```

## What this package does not do

- It has no sender and no complete receiver session: there is no state
  machine that walks an original PSBT through broadcast, ownership and
  fee checks to a signed proposal, and no multiparty proposal builder.
  `merge_unsigned_tx`, the error types and `parse_payload` are the pieces
  such a flow would use.
- It does not encapsulate or decapsulate OHTTP requests and responses; it
  handles key configurations only.
- It does not sign, finalize, combine or extract PSBTs.
- It provides no command-line tool and no payjoin directory or relay server.

This software has not been independently reviewed. Use at your own risk.