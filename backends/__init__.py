"""External collaborators: auth provider and object storage"""
