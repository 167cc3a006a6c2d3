# OAuth2 protocol core: models, storage, server, sweeper, profiles.
