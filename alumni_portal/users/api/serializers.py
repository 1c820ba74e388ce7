from rest_framework import serializers

from alumni_portal.users.models import User


class PublicUserSerializer(serializers.ModelSerializer[User]):
    """Public identity: never exposes password or token material."""

    class Meta:
        model = User
        fields = ["id", "first_name", "last_name", "profile_picture"]
        read_only_fields = fields


class PresenceUserSerializer(PublicUserSerializer):
    class Meta(PublicUserSerializer.Meta):
        fields = [*PublicUserSerializer.Meta.fields, "is_online", "last_seen_at"]
        read_only_fields = fields


class UserSerializer(serializers.ModelSerializer[User]):
    full_name = serializers.CharField(source="name", read_only=True)
    id = serializers.IntegerField(read_only=True)
    username = serializers.CharField(read_only=True)
    email = serializers.EmailField(read_only=True)

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "first_name",
            "last_name",
            "full_name",
            "email",
            "profile_picture",
            "is_online",
            "last_seen_at",
        ]
        read_only_fields = ["is_online", "last_seen_at"]
