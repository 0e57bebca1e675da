"""
Unit tests for UserCRUDManager.

The users collection is a mock; the assertions check the queries and
updates sent to it.
"""

from datetime import timedelta

import bcrypt
import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError, OperationFailure

from courseware.database.connection_manager import DatabaseConnectionError
from courseware.models.base import utcnow
from courseware.models.user import User, UserRole
from courseware.services.user_crud_manager import (
    UserAlreadyExistsError,
    UserCRUDManager,
    UserNotFoundError,
    UserStoreError,
    UserValidationError
)

PASSWORD = 'correct-horse'


@pytest.fixture
def users(collections):
    return collections['users']


@pytest.fixture
def user_manager(mock_database_manager):
    return UserCRUDManager(mock_database_manager)


def _stored_user(user_id=None, password=PASSWORD, **overrides):
    """Document as it would come back from the users collection."""
    document = {
        '_id': user_id or ObjectId(),
        'name': 'Ada Lovelace',
        'email': 'ada@example.com',
        'role': 'student',
        'avatar': 'default.jpg',
        'enrolled_courses': [],
        'created_courses': [],
        'created_at': utcnow(),
        'updated_at': utcnow(),
        'last_active': utcnow()
    }
    if password is not None:
        document['password'] = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=4)).decode('utf-8')
    document.update(overrides)
    return document


class TestCreateUser:
    """Test cases for creating users."""

    @pytest.mark.asyncio
    async def test_create_user_hashes_password(self, user_manager, users):
        # Act
        user = await user_manager.create_user('Ada Lovelace', 'Ada@Example.com', PASSWORD)

        # Assert
        users.insert_one.assert_awaited_once()
        document = users.insert_one.await_args.args[0]
        assert document['email'] == 'ada@example.com'
        assert document['password'].startswith('$2b$')
        assert document['password'] != PASSWORD
        assert document['role'] == 'student'
        assert user.id == str(users.insert_one.return_value.inserted_id)
        assert user.password is None

    @pytest.mark.asyncio
    async def test_create_user_with_role_and_avatar(self, user_manager, users):
        user = await user_manager.create_user(
            'Grace Hopper', 'grace@example.com', PASSWORD,
            role=UserRole.INSTRUCTOR, avatar='grace.png'
        )

        document = users.insert_one.await_args.args[0]
        assert document['role'] == 'instructor'
        assert document['avatar'] == 'grace.png'
        assert user.role is UserRole.INSTRUCTOR

    @pytest.mark.asyncio
    async def test_duplicate_email_raises_already_exists(self, user_manager, users):
        users.insert_one.side_effect = DuplicateKeyError("E11000 duplicate key error")

        with pytest.raises(UserAlreadyExistsError):
            await user_manager.create_user('Ada', 'ada@example.com', PASSWORD)

    @pytest.mark.asyncio
    async def test_invalid_data_raises_validation_error(self, user_manager, users):
        with pytest.raises(UserValidationError):
            await user_manager.create_user('Ada', 'not-an-email', PASSWORD)

        users.insert_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_driver_error_wrapped(self, user_manager, users):
        users.insert_one.side_effect = OperationFailure("not authorized")

        with pytest.raises(UserStoreError):
            await user_manager.create_user('Ada', 'ada@example.com', PASSWORD)

    @pytest.mark.asyncio
    async def test_disconnected_store_raises_store_error(self, user_manager, mock_database_manager):
        mock_database_manager.get_collection.side_effect = DatabaseConnectionError("Database is not connected")

        with pytest.raises(UserStoreError):
            await user_manager.create_user('Ada', 'ada@example.com', PASSWORD)


class TestSaveUser:
    """Test cases for updating existing users."""

    @pytest.mark.asyncio
    async def test_update_without_loaded_hash_keeps_stored_password(self, user_manager, users):
        user = User.from_document(_stored_user(password=None))
        user.bio = 'Mathematician'

        await user_manager.save_user(user)

        users.update_one.assert_awaited_once()
        query, update = users.update_one.await_args.args
        assert query == {'_id': ObjectId(user.id)}
        assert update['$set']['bio'] == 'Mathematician'
        assert 'password' not in update['$set']
        assert '_id' not in update['$set']

    @pytest.mark.asyncio
    async def test_changed_password_is_rehashed(self, user_manager, users):
        user = User.from_document(_stored_user(password=None))
        user.password = 'new-password-1'

        await user_manager.save_user(user)

        stored_hash = users.update_one.await_args.args[1]['$set']['password']
        assert bcrypt.checkpw(b'new-password-1', stored_hash.encode('utf-8'))

    @pytest.mark.asyncio
    async def test_missing_user_raises_not_found(self, user_manager, users):
        users.update_one.return_value.matched_count = 0
        user = User.from_document(_stored_user(password=None))

        with pytest.raises(UserNotFoundError):
            await user_manager.save_user(user)

    @pytest.mark.asyncio
    async def test_new_user_without_password_rejected(self, user_manager, users):
        with pytest.raises(UserValidationError):
            await user_manager.save_user(User(name='Ada', email='ada@example.com'))

        users.insert_one.assert_not_awaited()


class TestReadUser:
    """Test cases for lookups."""

    @pytest.mark.asyncio
    async def test_get_user_by_id_excludes_password_by_default(self, user_manager, users):
        user_id = ObjectId()
        users.find_one.return_value = _stored_user(user_id, password=None)

        user = await user_manager.get_user_by_id(str(user_id))

        users.find_one.assert_awaited_once_with({'_id': user_id}, {'password': False})
        assert user.id == str(user_id)
        assert user.hashed_password is None

    @pytest.mark.asyncio
    async def test_get_user_by_id_with_password(self, user_manager, users):
        user_id = ObjectId()
        users.find_one.return_value = _stored_user(user_id)

        user = await user_manager.get_user_by_id(str(user_id), include_password=True)

        users.find_one.assert_awaited_once_with({'_id': user_id}, None)
        assert user.compare_password(PASSWORD) is True

    @pytest.mark.asyncio
    async def test_get_user_not_found_returns_none(self, user_manager, users):
        assert await user_manager.get_user_by_id(str(ObjectId())) is None

    @pytest.mark.asyncio
    async def test_invalid_id_rejected(self, user_manager, users):
        with pytest.raises(UserValidationError):
            await user_manager.get_user_by_id('nope')

        users.find_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_user_by_email_normalizes(self, user_manager, users):
        await user_manager.get_user_by_email('  ADA@example.com ')

        assert users.find_one.await_args.args[0] == {'email': 'ada@example.com'}


class TestAuthentication:
    """Test cases for credential checks and activity tracking."""

    @pytest.mark.asyncio
    async def test_authenticate_success_updates_last_active(self, user_manager, users):
        user_id = ObjectId()
        users.find_one.return_value = _stored_user(user_id)

        user = await user_manager.authenticate('ada@example.com', PASSWORD)

        assert user is not None
        query, update = users.update_one.await_args.args
        assert query == {'_id': user_id}
        assert list(update['$set']) == ['last_active']

    @pytest.mark.asyncio
    async def test_authenticate_wrong_password(self, user_manager, users):
        users.find_one.return_value = _stored_user()

        assert await user_manager.authenticate('ada@example.com', 'wrong-password') is None
        users.update_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_authenticate_unknown_email(self, user_manager, users):
        assert await user_manager.authenticate('nobody@example.com', PASSWORD) is None

    @pytest.mark.asyncio
    async def test_update_last_active_writes_only_that_field(self, user_manager, users):
        user = User.from_document(_stored_user(password=None))
        before = user.last_active

        stamped = await user_manager.update_last_active(user)

        assert stamped >= before
        users.update_one.assert_awaited_once_with(
            {'_id': ObjectId(user.id)},
            {'$set': {'last_active': stamped}}
        )

    @pytest.mark.asyncio
    async def test_update_last_active_requires_saved_user(self, user_manager):
        with pytest.raises(UserValidationError):
            await user_manager.update_last_active(User(name='Ada', email='ada@example.com'))


class TestPasswordReset:
    """Test cases for the reset token flow."""

    @pytest.mark.asyncio
    async def test_create_reset_token_stores_digest(self, user_manager, users):
        user_id = ObjectId()
        users.find_one.return_value = _stored_user(user_id, password=None)

        token = await user_manager.create_password_reset_token('ada@example.com')

        query, update = users.update_one.await_args.args
        assert query == {'_id': user_id}
        assert update['$set']['reset_password_token'] == User.hash_reset_token(token)
        assert update['$set']['reset_password_expiry'] > utcnow() + timedelta(minutes=9)

    @pytest.mark.asyncio
    async def test_create_reset_token_unknown_email(self, user_manager, users):
        with pytest.raises(UserNotFoundError):
            await user_manager.create_password_reset_token('nobody@example.com')

    @pytest.mark.asyncio
    async def test_lookup_by_token_requires_unexpired_digest(self, user_manager, users):
        await user_manager.get_user_by_reset_token('abc')

        query = users.find_one.await_args.args[0]
        assert query['reset_password_token'] == User.hash_reset_token('abc')
        assert '$gt' in query['reset_password_expiry']

    @pytest.mark.asyncio
    async def test_reset_password_sets_hash_and_clears_token(self, user_manager, users):
        users.find_one.return_value = _stored_user(
            password=None,
            reset_password_token=User.hash_reset_token('abc'),
            reset_password_expiry=utcnow() + timedelta(minutes=5)
        )

        user = await user_manager.reset_password('abc', 'brand-new-pass')

        update = users.update_one.await_args.args[1]['$set']
        assert bcrypt.checkpw(b'brand-new-pass', update['password'].encode('utf-8'))
        assert update['reset_password_token'] is None
        assert update['reset_password_expiry'] is None
        assert user.reset_password_token is None

    @pytest.mark.asyncio
    async def test_reset_password_invalid_token(self, user_manager, users):
        with pytest.raises(UserValidationError):
            await user_manager.reset_password('expired', 'brand-new-pass')

    @pytest.mark.asyncio
    async def test_reset_password_rejects_short_password(self, user_manager, users):
        users.find_one.return_value = _stored_user(password=None)

        with pytest.raises(UserValidationError):
            await user_manager.reset_password('abc', 'short')

        users.update_one.assert_not_awaited()


class TestIndexesAndDelete:
    """Test cases for index setup and deletion."""

    @pytest.mark.asyncio
    async def test_ensure_indexes(self, user_manager, users):
        await user_manager.ensure_indexes()

        users.create_index.assert_any_await('email', unique=True)
        users.create_index.assert_any_await('reset_password_token', sparse=True)

    @pytest.mark.asyncio
    async def test_delete_user(self, user_manager, users):
        user_id = ObjectId()

        assert await user_manager.delete_user(str(user_id)) is True
        users.delete_one.assert_awaited_once_with({'_id': user_id})

    @pytest.mark.asyncio
    async def test_delete_missing_user(self, user_manager, users):
        users.delete_one.return_value.deleted_count = 0

        assert await user_manager.delete_user(str(ObjectId())) is False
