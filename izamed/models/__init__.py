from izamed.models.user import User, RoleEnum
