# vote_server/audit/audit_logger.py

import json
import base64
import hashlib
import logging
import os
import threading
from datetime import timedelta
from enum import Enum

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from vote_server import db
from vote_server.database.models import AuditLogEntry, isoformat, utcnow

logger = logging.getLogger(__name__)

# Append-only audit trail with hash chaining and Ed25519 signatures.
# Entries are never updated or deleted here.


class AuditEventType(Enum):
    LOGIN = "LOGIN"
    VOTE = "VOTE"
    ADMIN_ACTION = "ADMIN_ACTION"
    SECURITY_EVENT = "SECURITY_EVENT"


class AuditLogger:
    def __init__(self, signing_key_pem=None, key_path=None):
        """
        signing_key_pem: PEM encoded Ed25519 private key
        key_path: file holding the key; generated on first start when missing
        Without either, signatures use a per-process key and the chain stops
        verifying after a restart.
        """
        self._lock = threading.Lock()
        if signing_key_pem:
            self.signing_key = self._load_key(signing_key_pem.encode())
        elif key_path:
            self.signing_key = self._load_or_create_key(key_path)
        else:
            logger.warning("No audit signing key configured; using an ephemeral key, "
                           "so audit log verification will fail after a restart")
            self.signing_key = Ed25519PrivateKey.generate()

    @staticmethod
    def _load_key(pem):
        key = serialization.load_pem_private_key(pem, password=None)
        if not isinstance(key, Ed25519PrivateKey):
            raise ValueError("audit signing key must be an Ed25519 private key")
        return key

    def _load_or_create_key(self, key_path):
        if os.path.exists(key_path):
            with open(key_path, 'rb') as f:
                return self._load_key(f.read())
        key = Ed25519PrivateKey.generate()
        pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        directory = os.path.dirname(key_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, 'wb') as f:
            f.write(pem)
        logger.info("Generated audit signing key at %s", key_path)
        return key

    @staticmethod
    def _canonical(timestamp, event_type, actor, message, metadata, ip, previous_hash):
        log_entry = {
            "timestamp": isoformat(timestamp),
            "type": event_type,
            "actor": actor,
            "message": message,
            "metadata": metadata,
            "ip": ip,
            "previous_hash": previous_hash,
        }
        return json.dumps(log_entry, sort_keys=True).encode()

    def append(self, event_type, actor, message, metadata=None):
        """Append one entry and commit it. Returns the entry, or None if the write failed."""
        event_type = AuditEventType(event_type).value
        # normalise through JSON so the stored value hashes identically on re-read
        metadata = json.loads(json.dumps(metadata or {}, default=str))
        actor = str(actor or 'unknown')[:254]
        ip = str(metadata.get('ip') or 'unknown')[:64]

        with self._lock:
            try:
                previous_hash = (db.session.query(AuditLogEntry.hash)
                                 .order_by(AuditLogEntry.id.desc())
                                 .limit(1)
                                 .scalar())
                timestamp = utcnow()
                entry_json = self._canonical(timestamp, event_type, actor, message, metadata, ip, previous_hash)
                signature = self.signing_key.sign(entry_json)
                entry = AuditLogEntry(
                    timestamp=timestamp,
                    type=event_type,
                    actor=actor,
                    message=message,
                    event_metadata=metadata,
                    ip=ip,
                    previous_hash=previous_hash,
                    hash=hashlib.sha256(entry_json).hexdigest(),
                    signature=base64.b64encode(signature).decode(),
                )
                db.session.add(entry)
                db.session.commit()
            except SQLAlchemyError:
                db.session.rollback()
                logger.exception("Audit log write failed: %s %s", event_type, message)
                return None

        logger.debug("audit %s actor=%s: %s", event_type, actor, message)
        return entry

    def log_security_event(self, actor, message, reason=None, **metadata):
        if reason:
            metadata['reason'] = reason
        return self.append(AuditEventType.SECURITY_EVENT, actor, message, metadata)

    def log_admin_action(self, actor, message, **metadata):
        return self.append(AuditEventType.ADMIN_ACTION, actor, message, metadata)

    def query(self, event_type=None, actor=None, start=None, end=None, offset=0, limit=50):
        """Filtered listing, newest first. Returns (entries, total)."""
        q = db.session.query(AuditLogEntry)
        if event_type:
            q = q.filter(AuditLogEntry.type == event_type)
        if actor:
            q = q.filter(func.lower(AuditLogEntry.actor).contains(actor.lower(), autoescape=True))
        if start is not None:
            q = q.filter(AuditLogEntry.timestamp >= start)
        if end is not None:
            q = q.filter(AuditLogEntry.timestamp <= end)
        total = q.count()
        entries = (q.order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())
                   .offset(offset)
                   .limit(limit)
                   .all())
        return entries, total

    def statistics(self, now=None):
        now = now or utcnow()
        counts = dict(db.session.query(AuditLogEntry.type, func.count(AuditLogEntry.id))
                      .group_by(AuditLogEntry.type)
                      .all())
        total = sum(counts.values())

        days = [(now - timedelta(days=i)).date() for i in range(6, -1, -1)]
        window_start = now.replace(hour=0, minute=0, second=0, microsecond=0) - timedelta(days=6)
        by_date = {day.isoformat(): 0 for day in days}
        for (timestamp,) in (db.session.query(AuditLogEntry.timestamp)
                             .filter(AuditLogEntry.timestamp >= window_start)
                             .all()):
            key = timestamp.date().isoformat()
            if key in by_date:
                by_date[key] += 1

        recent, _ = self.query(limit=10)
        return {
            'total': total,
            'byType': counts,
            'byDate': by_date,
            'recentActivity': [e.to_dict() for e in recent],
            'securityEvents': counts.get(AuditEventType.SECURITY_EVENT.value, 0),
            'loginEvents': counts.get(AuditEventType.LOGIN.value, 0),
            'voteEvents': counts.get(AuditEventType.VOTE.value, 0),
            'adminActions': counts.get(AuditEventType.ADMIN_ACTION.value, 0),
        }

    def verify_log_integrity(self):
        """Walk the chain oldest-first, checking links, hashes and signatures."""
        public_key = self.signing_key.public_key()
        previous_hash = None
        checked = 0
        for entry in db.session.query(AuditLogEntry).order_by(AuditLogEntry.id.asc()).yield_per(500):
            entry_json = self._canonical(entry.timestamp, entry.type, entry.actor, entry.message,
                                         entry.event_metadata or {}, entry.ip, entry.previous_hash)
            if entry.previous_hash != previous_hash or hashlib.sha256(entry_json).hexdigest() != entry.hash:
                return {'valid': False, 'entries': checked, 'brokenAt': entry.id}
            try:
                public_key.verify(base64.b64decode(entry.signature), entry_json)
            except (InvalidSignature, ValueError):
                return {'valid': False, 'entries': checked, 'brokenAt': entry.id}
            previous_hash = entry.hash
            checked += 1
        return {'valid': True, 'entries': checked, 'brokenAt': None}
